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
import unittest

from pgscan import addrspace
from pgscan import constants
from pgscan import plugin
from pgscan import testlib
from pgscan.plugins.windows import pagetables


class PageTableLayoutTest(testlib.PGScanBaseUnitTestCase):
    """Tests for the self-map arithmetic."""

    def testLegacyBases(self):
        layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        self.assertEqual(layout.pte_base, 0xFFFFF68000000000)
        self.assertEqual(layout.pde_base, 0xFFFFF6FB40000000)
        self.assertEqual(layout.ppe_base, 0xFFFFF6FB7DA00000)
        self.assertEqual(layout.pxe_base, 0xFFFFF6FB7DBED000)
        self.assertEqual(layout.pxe_top, 0xFFFFF6FB7DBEDFFF)

    def testAddressToEntries(self):
        layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        address = 0xFFFFF8A012345678

        self.assertEqual(layout.MiAddressToPxe(address),
                         0xFFFFF6FB7DBEDF88)
        self.assertEqual(layout.MiAddressToPte(address),
                         0xFFFFF6FC50091A28)

    def testPteToAddressInvertsAddressToPte(self):
        for pte_base in (constants.LEGACY_PTE_BASE, 0xFFFFB48000000000):
            layout = pagetables.PageTableLayout(pte_base)
            for address in (0xFFFFF8A012340000, 0xFFFF800000000000,
                            0xFFFFFA8001234000, 0xFFFFF80002A5B000):
                self.assertEqual(
                    layout.MiPteToAddress(layout.MiAddressToPte(address)),
                    address)

    def testTables(self):
        layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        address = 0xFFFFF8A012340000
        pxe_index = (address >> 39) & 0x1FF
        ppe_index = (address >> 30) & 0x3FFFF
        pde_index = (address >> 21) & 0x7FFFFFF

        self.assertEqual(layout.PxeTable(), layout.pxe_base)
        self.assertEqual(layout.MiAddressToPpe(address) & ~0xFFF,
                         layout.PpeTable(pxe_index))
        self.assertEqual(layout.MiAddressToPde(address) & ~0xFFF,
                         layout.PdeTable(ppe_index))
        self.assertEqual(layout.MiAddressToPte(address) & ~0xFFF,
                         layout.PteTable(pde_index))


class PteBaseTest(testlib.PGScanBaseUnitTestCase):

    ROUTINE = 0xFFFFF80002A40000
    RANDOMIZED_BASE = 0xFFFFB48000000000

    def testLegacyBuild(self):
        fake = self.MakeFakeTarget(build=7601)
        self.assertEqual(self.session.GetParameter("pte_base"),
                         constants.LEGACY_PTE_BASE)
        self.assertEqual(fake.symbol_lookups, [])
        self.assertEqual(fake.reads, [])

    def testRandomizedBase(self):
        fake = self.MakeFakeTarget(
            build=14393,
            symbols={"nt!MmGetVirtualForPhysical": self.ROUTINE})
        fake.write(self.ROUTINE, b"\x90" * 0x20)
        fake.write(self.ROUTINE + 0x20, pagetables.PTE_BASE_PATTERN)
        fake.write_pointer(
            self.ROUTINE + 0x20 + len(pagetables.PTE_BASE_PATTERN),
            self.RANDOMIZED_BASE)

        self.assertEqual(self.session.GetParameter("pte_base"),
                         self.RANDOMIZED_BASE)

        # The value is cached.
        fake.ResetRecords()
        self.assertEqual(self.session.GetParameter("pte_base"),
                         self.RANDOMIZED_BASE)
        self.assertEqual(fake.reads, [])

    def testPatternNotFound(self):
        fake = self.MakeFakeTarget(
            build=15063,
            symbols={"nt!MmGetVirtualForPhysical": self.ROUTINE})
        fake.write(self.ROUTINE, b"\x90" * 0x100)

        self.assertRaises(plugin.PatternNotFound,
                          pagetables.ResolvePteBase, self.session)

    def testSymbolMissing(self):
        self.MakeFakeTarget(build=16299)
        self.assertRaises(plugin.RequiredSymbolMissing,
                          pagetables.ResolvePteBase, self.session)


class ExecutableMappingTest(testlib.PGScanBaseUnitTestCase):

    ADDRESS = 0xFFFFFA8001234000

    def setUp(self):
        super(ExecutableMappingTest, self).setUp()
        self.fake = self.MakeFakeTarget(build=7601)
        self.layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)

    def testWritableExecutablePte(self):
        self.fake.write_pte(self.layout.MiAddressToPte(self.ADDRESS))
        self.assertTrue(pagetables.IsRwxAddress(
            self.session, self.ADDRESS, self.layout))

    def testNonExecutablePte(self):
        self.fake.write_pte(self.layout.MiAddressToPte(self.ADDRESS),
                            no_execute=True)
        self.assertFalse(pagetables.IsRwxAddress(
            self.session, self.ADDRESS, self.layout))

    def testReadOnlyPte(self):
        self.fake.write_pte(self.layout.MiAddressToPte(self.ADDRESS),
                            write=False)
        self.assertFalse(pagetables.IsRwxAddress(
            self.session, self.ADDRESS, self.layout))

    def testLargePage(self):
        # The PTE is not readable but the PDE maps a writable 2mb page.
        self.fake.write_pte(self.layout.MiAddressToPde(self.ADDRESS),
                            large_page=True)
        self.assertTrue(pagetables.IsRwxAddress(
            self.session, self.ADDRESS, self.layout))

    def testNothingMapped(self):
        self.assertFalse(pagetables.IsRwxAddress(
            self.session, self.ADDRESS, self.layout))

    def testLayoutFromSession(self):
        self.fake.write_pte(self.layout.MiAddressToPte(self.ADDRESS))
        self.assertTrue(pagetables.IsRwxAddress(self.session, self.ADDRESS))

    def testSlotArray(self):
        table = self.layout.PteTable(0x123)
        self.fake.write_pte(table + 8 * 5, pfn=0x42)

        ptes = pagetables.ReadPteSlotArray(self.session, table)
        self.assertEqual(len(ptes), constants.PTE_PER_PAGE)
        self.assertEqual(ptes[5].Valid, 1)
        self.assertEqual(ptes[5].PageFrameNumber, 0x42)
        self.assertEqual(ptes[4].Valid, 0)

    def testUnreadableSlotArray(self):
        with self.assertRaises(pagetables.PageTableUnreadable) as e:
            pagetables.ReadPteSlotArray(
                self.session, self.layout.PteTable(0x123))

        self.assertIsInstance(e.exception, addrspace.MemoryUnreadable)


class PTEPluginTest(testlib.PGScanBaseUnitTestCase):

    ADDRESS = 0xFFFFF8A012340000

    def testWalk(self):
        fake = self.MakeFakeTarget(build=7601)
        layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        fake.write_pte(layout.MiAddressToPxe(self.ADDRESS), pfn=1)
        fake.write_pte(layout.MiAddressToPpe(self.ADDRESS), pfn=2)
        fake.write_pte(layout.MiAddressToPde(self.ADDRESS), pfn=3)
        fake.write_pte(layout.MiAddressToPte(self.ADDRESS), pfn=4,
                       no_execute=True)

        lines = self.RunPlugin("pte", address=self.ADDRESS).splitlines()

        # Header, separator and one row per level.
        self.assertEqual(len(lines), 6)
        self.assertTrue(lines[2].startswith("PXE "))
        self.assertIn("0x%016x" % layout.MiAddressToPte(self.ADDRESS),
                      lines[5])
        self.assertEqual(
            [x.strip() for x in lines[5].split("||")],
            ["PTE", "0x%016x" % layout.MiAddressToPte(self.ADDRESS),
             "0x00000004", "True", "True", "True", "False"])

    def testStopsAtLargePage(self):
        fake = self.MakeFakeTarget(build=7601)
        layout = pagetables.PageTableLayout(constants.LEGACY_PTE_BASE)
        fake.write_pte(layout.MiAddressToPxe(self.ADDRESS))
        fake.write_pte(layout.MiAddressToPpe(self.ADDRESS))
        fake.write_pte(layout.MiAddressToPde(self.ADDRESS), large_page=True)

        lines = self.RunPlugin("pte", address=self.ADDRESS).splitlines()
        self.assertEqual(len(lines), 5)
        self.assertTrue(lines[4].startswith("PDE "))


if __name__ == "__main__":
    unittest.main()
