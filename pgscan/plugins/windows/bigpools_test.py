# pgscan - PatchGuard context discovery for Windows kernel memory.
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 2 of the License, or (at
# your option) any later version.
#
# This program is distributed in the hope that it will be useful, but
# WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the GNU
# General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 59 Temple Place, Suite 330, Boston, MA 02111-1307 USA
#
import struct
import unittest

from pgscan import addrspace
from pgscan import constants
from pgscan import plugin
from pgscan import testlib
from pgscan.plugins.windows import bigpools
from pgscan.plugins.windows import pagetables


# Random looking data: no 0x00 or 0xFF and 100 distinct values.
RANDOM_DATA = bytes(bytearray(range(1, 101)))


class BigPoolFixture(testlib.PGScanBaseUnitTestCase):
    """Builds a big page table in a fake Windows 7 kernel."""
    __abstract = True

    BUILD = 7601
    TABLE_SIZE_SYMBOL = 0xFFFFF80002C00000
    TABLE_SYMBOL = 0xFFFFF80002C00008
    TABLE = 0xFFFFFA8000100000

    def setUp(self):
        super(BigPoolFixture, self).setUp()
        self.fake = self.MakeFakeTarget(
            build=self.BUILD,
            symbols={
                "nt!PoolBigPageTableSize": self.TABLE_SIZE_SYMBOL,
                "nt!PoolBigPageTable": self.TABLE_SYMBOL,
            })
        self.layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        self.rows = 0

    def SetTableSize(self, rows):
        self.fake.write_pointer(self.TABLE_SIZE_SYMBOL, rows)
        self.fake.write_pointer(self.TABLE_SYMBOL, self.TABLE)
        self.fake.write(self.TABLE, b"\x00" * (0x18 * rows))

    def AddRow(self, va, size, tag=b"Abcd", pool_type=0, data=RANDOM_DATA,
               **pte_flags):
        """Add a row for an allocation and map it."""
        row = self.TABLE + 0x18 * self.rows
        self.rows += 1

        self.fake.write(row, struct.pack("<Q4sIQ", va, tag, pool_type, size))
        if data is not None:
            self.fake.write(va & ~1, data)
            self.fake.write_pte(self.layout.MiAddressToPte(va & ~1),
                                **pte_flags)


class BigPoolScannerTest(BigPoolFixture):
    """Tests for the big page table filters."""

    def Scan(self):
        return bigpools.BigPoolScanner(session=self.session).scan()

    def testFilters(self):
        self.SetTableSize(8)
        minimum = constants.MINIMUM_REGION_SIZE

        self.AddRow(0xFFFFFA8001230000, minimum)
        self.AddRow(0xFFFFFA8001240000, minimum - 1)
        self.AddRow(0xFFFFFA8001250000, constants.MAXIMUM_REGION_SIZE + 1)
        self.AddRow(0xFFFFFA8001260001, minimum)
        self.AddRow(0xFFFFFA8001270000, minimum, pool_type=1)
        self.AddRow(0xFFFFFA8001280000, minimum, write=False)
        self.AddRow(0xFFFFFA8001290000, minimum, data=b"\x00" * 100)
        self.AddRow(0xFFFFFA8001220000, constants.MAXIMUM_REGION_SIZE)

        result = self.Scan()
        self.assertFalse(result.cancelled)
        self.assertEqual([x.va for x in result.hits],
                         [0xFFFFFA8001220000, 0xFFFFFA8001230000])

        hit = result.hits[1]
        self.assertEqual(hit.number_of_bytes, minimum)
        self.assertEqual(hit.tag, b"Abcd")
        self.assertEqual(hit.randomness.distinctive_count, 0)
        self.assertEqual(hit.randomness.distinct_byte_value_count, 100)

    def testRejectedRowsAreNotRead(self):
        self.SetTableSize(3)
        self.AddRow(0xFFFFFA8001240000, constants.MINIMUM_REGION_SIZE - 1)
        self.AddRow(0xFFFFFA8001280000, constants.MINIMUM_REGION_SIZE,
                    write=False)
        self.AddRow(0xFFFFFA8001290000, constants.MINIMUM_REGION_SIZE,
                    no_execute=True)

        self.assertEqual(self.Scan().hits, [])
        self.assertFalse(self.fake.was_read(0xFFFFFA8001240000))
        self.assertFalse(self.fake.was_read(0xFFFFFA8001280000))
        self.assertFalse(self.fake.was_read(0xFFFFFA8001290000))

    def testLargePageMapping(self):
        self.SetTableSize(1)
        va = 0xFFFFFA8001230000
        self.AddRow(va, 0x10000, data=None)
        self.fake.write(va, RANDOM_DATA)
        self.fake.write_pte(self.layout.MiAddressToPde(va), large_page=True)

        self.assertEqual([x.va for x in self.Scan().hits], [va])

    def testUnreadableAllocationIsSkipped(self):
        self.SetTableSize(2)
        self.AddRow(0xFFFFFA8001230000, 0x10000)
        self.AddRow(0xFFFFFA8001240000, 0x10000)
        self.fake.unmap_page(0xFFFFFA8001240000)

        self.assertEqual([x.va for x in self.Scan().hits],
                         [0xFFFFFA8001230000])

    def testThresholdsFromSession(self):
        self.SetTableSize(1)
        self.AddRow(0xFFFFFA8001230000, 0x10000)

        with self.session:
            self.session.SetParameter("minimum_region_size", 0x20000)

        self.assertEqual(self.Scan().hits, [])

    def testUnreadableTable(self):
        self.fake.write_pointer(self.TABLE_SIZE_SYMBOL, 0x10)
        self.fake.write_pointer(self.TABLE_SYMBOL, self.TABLE)

        self.assertRaises(addrspace.MemoryUnreadable, self.Scan)

    def testMissingSymbol(self):
        del self.fake.symbols["nt!PoolBigPageTable"]
        self.SetTableSize(1)

        self.assertRaises(plugin.RequiredSymbolMissing, self.Scan)

    def testCancelledBeforeStart(self):
        self.SetTableSize(1)
        self.AddRow(0xFFFFFA8001230000, 0x10000)
        self.session.cancellation.Cancel()

        result = self.Scan()
        self.assertTrue(result.cancelled)
        self.assertEqual(result.hits, [])

    def testCancelledKeepsPartialResults(self):
        self.SetTableSize(constants.BIG_POOL_PROGRESS_INTERVAL + 1)
        self.AddRow(0xFFFFFA8001230000, 0x10000)
        self.rows = constants.BIG_POOL_PROGRESS_INTERVAL
        self.AddRow(0xFFFFFA8001240000, 0x10000)

        def Cancel(_message, index=0, **_):
            if index == constants.BIG_POOL_PROGRESS_INTERVAL:
                self.session.cancellation.Cancel()

        self.session.progress.Register("test", Cancel)

        result = self.Scan()
        self.assertTrue(result.cancelled)
        self.assertEqual([x.va for x in result.hits], [0xFFFFFA8001230000])

    def testWindows10RowLayout(self):
        self.session = self.MakeUserSession()
        self.fake = self.MakeFakeTarget(
            build=10586,
            symbols={
                "nt!PoolBigPageTableSize": self.TABLE_SIZE_SYMBOL,
                "nt!PoolBigPageTable": self.TABLE_SYMBOL,
            })
        self.SetTableSize(2)

        # The pool type lives in bits 8-19 of the fourth dword.
        self.AddRow(0xFFFFFA8001230000, 0x10000, pool_type=(1 << 8) | 0x5A)
        self.AddRow(0xFFFFFA8001240000, 0x10000, pool_type=(512 << 8) | 0x5A)

        self.assertEqual([x.va for x in self.Scan().hits],
                         [0xFFFFFA8001240000])


class BigPoolsPluginTest(BigPoolFixture):

    def testRender(self):
        self.SetTableSize(2)
        self.AddRow(0xFFFFFA8001230000, 0x10000, tag=b"Tag\xa0")
        self.AddRow(0xFFFFFA8001240000, 0x100)

        lines = self.RunPlugin("bigpools").splitlines()
        self.assertEqual(len(lines), 3)
        self.assertEqual(
            [x.strip() for x in lines[2].split("||")],
            ["0xfffffa8001230000", "0x00010000", "0", "100", "Tag", ""])

    def testUnsupportedBuildIsNotScanned(self):
        self.session = self.MakeUserSession()
        fake = self.MakeFakeTarget(build=9600)

        self.assertRaises(plugin.UnsupportedTarget,
                          self.RunPlugin, "bigpools")
        self.assertEqual(fake.reads, [])
        self.assertEqual(fake.symbol_lookups, [])


if __name__ == "__main__":
    unittest.main()
