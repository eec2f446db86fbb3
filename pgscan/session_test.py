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

from pgscan import kb
from pgscan import plugin
from pgscan import session
from pgscan import testlib


class CountingHook(kb.ParameterHook):
    """A hook which counts how often it runs."""

    name = "test_counter"
    calls = 0

    def calculate(self):
        CountingHook.calls += 1
        return CountingHook.calls


class PersistentCountingHook(CountingHook):
    name = "test_persistent_counter"
    volatile = False


class SessionTest(testlib.PGScanBaseUnitTestCase):
    """Test the session's parameter handling."""

    def setUp(self):
        super(SessionTest, self).setUp()
        CountingHook.calls = 0

    def testHooksAreCached(self):
        self.assertEqual(self.session.GetParameter("test_counter"), 1)
        self.assertEqual(self.session.GetParameter("test_counter"), 1)
        self.assertEqual(self.session.GetParameter("test_counter",
                                                   cached=False), 2)

    def testResetDropsVolatileValues(self):
        self.assertEqual(self.session.GetParameter("test_counter"), 1)
        self.assertEqual(
            self.session.GetParameter("test_persistent_counter"), 2)

        self.session.Reset()
        self.assertEqual(self.session.GetParameter("test_counter"), 3)
        self.assertEqual(
            self.session.GetParameter("test_persistent_counter"), 2)

    def testStateOverridesHooks(self):
        with self.session:
            self.session.SetParameter("test_counter", 42)

        self.assertEqual(self.session.GetParameter("test_counter"), 42)
        self.assertEqual(CountingHook.calls, 0)

    def testFalsyValuesAreCached(self):
        self.session.SetCache("falsy", 0)
        self.assertEqual(self.session.GetParameter("falsy", "default"), 0)
        self.assertTrue(self.session.HasParameter("falsy"))

    def testDefault(self):
        self.assertEqual(self.session.GetParameter("unknown", 5), 5)
        self.assertFalse(self.session.HasParameter("unknown"))

    def testHooksNeedTheContextManager(self):
        self.assertRaises(ValueError, self.session.SetParameter,
                          "filename", "MEMORY.DMP")

    def testChangingTheFilenameResetsTheSession(self):
        self.assertEqual(self.session.GetParameter("test_counter"), 1)
        with self.session:
            self.session.SetParameter("filename", "/does/not/exist.dmp")

        self.assertEqual(self.session.GetParameter("filename"),
                         "/does/not/exist.dmp")
        self.assertEqual(self.session.GetParameter("test_counter"), 2)

    def testLoggingLevel(self):
        with self.session:
            self.session.SetParameter("logging_level", "DEBUG")

        self.assertEqual(self.session.logging.level, 10)
        self.assertEqual(
            self.session.logging.getChild("Scanner").level, 30)

        with self.session:
            self.session.SetParameter("log_domain", ["Scanner"])

        self.assertEqual(
            self.session.logging.getChild("Scanner").level, 10)

    def testSessionsAreIndependent(self):
        other = session.Session()
        self.session.cancellation.Cancel()
        self.assertFalse(other.cancellation.cancelled)
        self.assertNotEqual(self.session.logging.name, other.logging.name)


class PluginRunnerTest(testlib.PGScanBaseUnitTestCase):

    def testUnknownPlugin(self):
        self.assertRaises(plugin.PluginError, self.RunPlugin, "no_such_plugin")

    def testPluginContainer(self):
        self.assertIn("findpg", dir(self.session.plugins))
        self.assertIn("dumppg", dir(self.session.plugins))
        self.assertRaises(AttributeError, getattr, self.session.plugins,
                          "no_such_plugin")

    def testMissingRequiredArg(self):
        self.MakeFakeTarget(build=7601)
        self.assertRaises(plugin.InvalidArgs, self.RunPlugin, "dumppg")

    def testSymbolicAddress(self):
        fake = self.MakeFakeTarget(
            build=7601, symbols={"nt!KiWaitNever": 0xFFFFF80002C00000})

        dumppg = self.session.plugins.dumppg(address="nt!KiWaitNever")
        self.assertEqual(dumppg.plugin_args.address, 0xFFFFF80002C00000)
        self.assertEqual(fake.symbol_lookups, ["nt!KiWaitNever"])

        dumppg = self.session.plugins.dumppg(address="0x1000")
        self.assertEqual(dumppg.plugin_args.address, 0x1000)


if __name__ == "__main__":
    unittest.main()
