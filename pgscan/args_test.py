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
import argparse
import unittest

from pgscan import args
from pgscan import plugin
from pgscan import testlib
from pgscan.plugins.windows import findpg
from pgscan.plugins.windows import pgcontext


class ArgsTest(testlib.PGScanBaseUnitTestCase):
    """Tests for the command line parser."""

    def testFindPlugin(self):
        self.assertEqual(args.FindPlugin(["-v", "findpg", "--foo"]),
                         ("findpg", ["-v", "--foo"]))
        self.assertEqual(args.FindPlugin(["-v"]), (None, ["-v"]))

    def testPluginArgs(self):
        plugin_cls, flags = args.parse_args(
            argv=["dumppg", "0xfffff8a012340000"], user_session=self.session)

        self.assertIs(plugin_cls, pgcontext.DumpPG)
        self.assertEqual(flags.address, "0xfffff8a012340000")

    def testGlobalArgs(self):
        plugin_cls, _ = args.parse_args(
            argv=["-v", "--kernel_base", "0xfffff80002a1e000",
                  "--minimum_randomness", "40", "findpg"],
            user_session=self.session)

        self.assertIs(plugin_cls, findpg.FindPG)
        self.assertEqual(self.session.GetParameter("kernel_base"),
                         0xfffff80002a1e000)
        self.assertEqual(self.session.GetParameter("minimum_randomness"), 40)
        self.assertEqual(self.session.GetParameter("logging_level"), "DEBUG")

    def testLogDomains(self):
        args.parse_args(argv=["--log_domain", "Scanner", "PageTables",
                              "bigpools"],
                        user_session=self.session)

        self.assertEqual(self.session.GetParameter("log_domain"),
                         ["Scanner", "PageTables"])

    def testGlobalArgCallback(self):
        seen = []
        args.parse_args(argv=["--version", "bigpools"],
                        user_session=self.session,
                        global_arg_cb=lambda flags, _: seen.append(
                            flags.version))

        self.assertEqual(seen, [True])

    def testVerboseAndQuiet(self):
        self.assertRaises(plugin.InvalidArgs, args.parse_args,
                          argv=["-v", "-q", "findpg"],
                          user_session=self.session)


class IntParserTest(testlib.PGScanBaseUnitTestCase):

    def setUp(self):
        super(IntParserTest, self).setUp()
        self.action = args.IntParser(option_strings=["--size"], dest="size")

    def testParse(self):
        self.assertEqual(self.action.parse_int("0x10"), 16)
        self.assertEqual(self.action.parse_int("100"), 100)
        self.assertEqual(self.action.parse_int("16k"), 0x4000)
        self.assertEqual(self.action.parse_int("15m"), 0xf00000)
        self.assertEqual(self.action.parse_int("1Gb"), 1 << 30)

    def testInvalid(self):
        self.assertRaises(argparse.ArgumentError,
                          self.action.parse_int, "lots")


if __name__ == "__main__":
    unittest.main()
