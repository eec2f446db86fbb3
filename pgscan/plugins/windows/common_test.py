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

from pgscan import constants
from pgscan import plugin
from pgscan import testlib
from pgscan.plugins.windows import common


class CheckTargetTest(testlib.PGScanBaseUnitTestCase):
    """Tests for the target checks every plugin runs first."""

    def testNoTarget(self):
        self.assertRaises(plugin.PluginError, common.CheckTarget, self.session)

    def testSupportedBuilds(self):
        for build in common.SUPPORTED_BUILDS:
            self.session = self.MakeUserSession()
            fake = self.MakeFakeTarget(build=build)

            self.assertEqual(common.CheckTarget(self.session), build)
            self.assertEqual(fake.reads, [])
            self.assertEqual(fake.symbol_lookups, [])

    def testUnsupportedBuild(self):
        self.MakeFakeTarget(build=9600)

        with self.assertRaises(plugin.UnsupportedTarget) as e:
            common.CheckTarget(self.session)

        self.assertEqual(str(e.exception), "Unsupported version (Windows8_1).")

    def testUnknownBuild(self):
        self.MakeFakeTarget(build=22000)
        self.assertRaises(plugin.UnsupportedTarget,
                          common.CheckTarget, self.session)

    def test32Bit(self):
        self.MakeFakeTarget(build=7601, is_32bit=True)
        self.assertRaises(plugin.UnsupportedTarget,
                          common.CheckTarget, self.session)


class OSBuildHookTest(testlib.PGScanBaseUnitTestCase):

    def testClassify(self):
        self.MakeFakeTarget(build=16299)
        self.assertEqual(self.session.GetParameter("os_build"),
                         constants.OSBuild.Windows10_1709)

    def testFirstClassificationWins(self):
        fake = self.MakeFakeTarget()
        with self.assertLogs(self.session.logging, "WARNING"):
            self.assertEqual(self.session.GetParameter("os_build"),
                             constants.OSBuild.Unknown)

        # A banner which shows up later does not change the build.
        fake.banner = constants.BANNER_PREFIX % 7601
        self.assertEqual(self.session.GetParameter("os_build"),
                         constants.OSBuild.Unknown)

    def testResetForgetsTheBuild(self):
        fake = self.MakeFakeTarget(build=7601)
        self.assertEqual(self.session.GetParameter("os_build"), 7601)

        self.session.Reset()
        fake.banner = constants.BANNER_PREFIX % 9200
        self.assertEqual(self.session.GetParameter("os_build"),
                         constants.OSBuild.Windows8)


class PfnDatabaseHookTest(testlib.PGScanBaseUnitTestCase):
    """The PFN database base is read once per session."""

    def testReadsPointer(self):
        fake = self.MakeFakeTarget(
            build=14393, symbols={"nt!MmPfnDatabase": 0xFFFFF80002C4A010})
        fake.write_pointer(0xFFFFF80002C4A010, 0xFFFFFA8000000000)

        self.assertEqual(self.session.GetParameter("pfn_database"),
                         0xFFFFFA8000000000)

        fake.ResetRecords()
        self.assertEqual(self.session.GetParameter("pfn_database"),
                         0xFFFFFA8000000000)
        self.assertEqual(fake.reads, [])
        self.assertEqual(fake.symbol_lookups, [])

    def testMissingSymbol(self):
        self.MakeFakeTarget(build=14393)
        self.assertRaises(plugin.RequiredSymbolMissing,
                          self.session.GetParameter, "pfn_database")

    def testOnlyANewImageDropsTheCache(self):
        fake = self.MakeFakeTarget(
            build=14393, symbols={"nt!MmPfnDatabase": 0xFFFFF80002C4A010})
        fake.write_pointer(0xFFFFF80002C4A010, 0xFFFFFA8000000000)
        self.session.GetParameter("pfn_database")

        fake.ResetRecords()
        with self.session:
            self.session.SetParameter("logging_level", "INFO")
            self.session.SetParameter("minimum_randomness", 40)

        self.session.GetParameter("pfn_database")
        self.assertEqual(fake.symbol_lookups, [])

        with self.session:
            self.session.SetParameter("symbols", "/does/not/exist.yaml")

        self.session.GetParameter("pfn_database")
        self.assertEqual(fake.symbol_lookups, ["nt!MmPfnDatabase"])


class ScanThresholdsTest(testlib.PGScanBaseUnitTestCase):

    def testDefaults(self):
        thresholds = common.GetScanThresholds(self.session)
        self.assertEqual(thresholds.examination_bytes, 100)
        self.assertEqual(thresholds.maximum_distinctive_number, 5)
        self.assertEqual(thresholds.minimum_randomness, 50)
        self.assertEqual(thresholds.minimum_region_size, 0x4000)
        self.assertEqual(thresholds.maximum_region_size, 0xf00000)

    def testOverride(self):
        with self.session:
            self.session.SetParameter("minimum_randomness", 20)

        self.assertEqual(
            common.GetScanThresholds(self.session).minimum_randomness, 20)


if __name__ == "__main__":
    unittest.main()
