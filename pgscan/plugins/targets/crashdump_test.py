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
import os
import struct
import unittest

from pgscan import addrspace
from pgscan import constants
from pgscan import plugin
from pgscan import testlib
from pgscan.plugins.targets import crashdump


KERNEL_ADDRESS = 0xFFFFF80002000000

PAGE_DATA = b"PatchGuard context"

BUGCHECK_PARAMETERS = (0x1111, 0x2222, 0x3333, 0x4444)


def BuildFullDump(build=7601, dump_type=1, signature=b"PAGEDU64"):
    """A full crash dump of five physical pages.

    Page 0 holds the PML4 and pages 1-3 map KERNEL_ADDRESS onto page 4.
    """
    header = bytearray(0x2000)
    header[0:8] = signature
    struct.pack_into("<II", header, 0x8, 15, build)
    struct.pack_into("<Q", header, 0x10, 0)                  # DTB
    struct.pack_into("<I", header, 0x38, 0x109)
    struct.pack_into("<4Q", header, 0x40, *BUGCHECK_PARAMETERS)
    struct.pack_into("<IxxxxQQQ", header, 0x88, 1, 5, 0, 5)  # One run.
    struct.pack_into("<I", header, 0xf98, dump_type)

    memory = bytearray(5 * 0x1000)
    struct.pack_into("<Q", memory, 0x0000 + 0x1F0 * 8, 0x1000 | 3)
    struct.pack_into("<Q", memory, 0x1000 + 0x000 * 8, 0x2000 | 3)
    struct.pack_into("<Q", memory, 0x2000 + 0x010 * 8, 0x3000 | 3)
    struct.pack_into("<Q", memory, 0x3000 + 0x000 * 8, 0x4000 | 3)
    memory[0x4000:0x4000 + len(PAGE_DATA)] = PAGE_DATA

    return bytes(header + memory)


class CrashDumpTestCase(testlib.PGScanBaseUnitTestCase):
    __abstract = True

    def WriteFile(self, name, data):
        filename = os.path.join(self.temp_directory, name)
        mode = "wb" if isinstance(data, bytes) else "wt"
        with open(filename, mode) as fd:
            fd.write(data)

        return filename


class SymbolFileTest(CrashDumpTestCase):

    def testRelativeSymbols(self):
        filename = self.WriteFile("relative.yaml", """
kernel_base: 0xfffff80002a1e000
symbols:
  nt!PoolBigPageTable: 0x2f1c08
  MmSystemRangeStart: 0x2f8a58
  NT!MmGetVirtualForPhysical: 0x1c2be0
""")
        symbols = crashdump.LoadSymbolFile(filename)
        self.assertEqual(symbols, {
            "nt!PoolBigPageTable": 0xfffff80002a1e000 + 0x2f1c08,
            "nt!MmSystemRangeStart": 0xfffff80002a1e000 + 0x2f8a58,
            "nt!MmGetVirtualForPhysical": 0xfffff80002a1e000 + 0x1c2be0,
        })

        # The kernel base can be overridden.
        symbols = crashdump.LoadSymbolFile(filename, kernel_base=0x1000000)
        self.assertEqual(symbols["nt!PoolBigPageTable"], 0x1000000 + 0x2f1c08)

    def testAbsoluteSymbols(self):
        filename = self.WriteFile("absolute.yaml", """
absolute: true
kernel_base: 0xfffff80002a1e000
symbols:
  nt!PoolBigPageTable: 0xfffff80002d0fc08
""")
        self.assertEqual(crashdump.LoadSymbolFile(filename),
                         {"nt!PoolBigPageTable": 0xfffff80002d0fc08})

    def testBadFiles(self):
        self.assertRaises(
            plugin.PluginError, crashdump.LoadSymbolFile,
            os.path.join(self.temp_directory, "missing.yaml"))

        self.assertRaises(
            plugin.PluginError, crashdump.LoadSymbolFile,
            self.WriteFile("list.yaml", "- 1\n- 2\n"))

        self.assertRaises(
            plugin.PluginError, crashdump.LoadSymbolFile,
            self.WriteFile("broken.yaml", "symbols: [\n"))

    def testNormalizeSymbolName(self):
        self.assertEqual(crashdump.NormalizeSymbolName("PoolBigPageTable"),
                         "nt!PoolBigPageTable")
        self.assertEqual(crashdump.NormalizeSymbolName("NT!PoolBigPageTable"),
                         "nt!PoolBigPageTable")


class CrashDumpTargetTest(CrashDumpTestCase):

    def OpenTarget(self, data, symbols=None):
        return crashdump.CrashDumpTarget(
            filename=self.WriteFile("MEMORY.DMP", data), symbols=symbols,
            session=self.session)

    def testFullDump(self):
        symbols = self.WriteFile("symbols.yaml", """
kernel_base: 0xfffff80002000000
symbols:
  nt!MmSystemRangeStart: 0x10
""")
        target = self.OpenTarget(BuildFullDump(), symbols=symbols)

        self.assertFalse(target.is_32bit())
        self.assertEqual(target.get_build_banner(), "Built by: 7601.")
        self.assertEqual(target.read(KERNEL_ADDRESS, len(PAGE_DATA)),
                         PAGE_DATA)
        self.assertEqual(target.read_ulong(KERNEL_ADDRESS),
                         struct.unpack("<I", PAGE_DATA[:4])[0])
        self.assertEqual(target.get_address_by_name("MmSystemRangeStart"),
                         KERNEL_ADDRESS + 0x10)
        self.assertEqual(target.read_bugcheck_data(),
                         (0x109, list(BUGCHECK_PARAMETERS)))
        self.assertEqual(target.search(KERNEL_ADDRESS, 0x100, b"Guard"),
                         KERNEL_ADDRESS + 5)

        self.assertRaises(addrspace.MemoryUnreadable, target.read,
                          KERNEL_ADDRESS + 0x1000, 8)
        self.assertRaises(plugin.RequiredSymbolMissing,
                          target.get_address_by_name, "nt!PoolBigPageTable")
        self.assertRaises(plugin.PatternNotFound, target.search,
                          KERNEL_ADDRESS, 0x100, b"missing")
        target.close()

    def test32BitDump(self):
        target = self.OpenTarget(BuildFullDump(signature=b"PAGEDUMP"))
        self.assertTrue(target.is_32bit())
        self.assertIsNone(target.get_build_banner())

    def testUnsupportedDumpType(self):
        self.assertRaises(plugin.UnsupportedTarget, self.OpenTarget,
                          BuildFullDump(dump_type=2))

    def testSessionOpensTheDump(self):
        filename = self.WriteFile("MEMORY.DMP", BuildFullDump(build=9200))
        with self.session:
            self.session.SetParameter("filename", filename)

        self.assertIsInstance(self.session.target, crashdump.CrashDumpTarget)
        self.assertEqual(self.session.GetParameter("os_build"),
                         constants.OSBuild.Windows8)

    def testNoFilename(self):
        self.assertIsNone(self.session.target)


if __name__ == "__main__":
    unittest.main()
