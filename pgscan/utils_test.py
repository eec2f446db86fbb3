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
import threading
import unittest

from pgscan import testlib
from pgscan import utils


class AttributeDictTest(testlib.PGScanBaseUnitTestCase):

    def testAttributes(self):
        data = utils.AttributeDict(a=1)
        data.b = 2
        self.assertEqual(data, dict(a=1, b=2))
        self.assertEqual(data.a, 1)
        self.assertIsNone(data.missing)

        # Setting None removes the key.
        data.a = None
        self.assertNotIn("a", data)

    def testPrivateAttributes(self):
        data = utils.AttributeDict()
        self.assertRaises(AttributeError, getattr, data, "_private")


class RangedCollectionTest(testlib.PGScanBaseUnitTestCase):

    def testContainingRange(self):
        ranges = utils.RangedCollection()
        ranges.insert(0x1000, 0x2000, "a")
        ranges.insert(0x3000, 0x3800, "b")

        self.assertEqual(ranges.get_containing_range(0x1000),
                         (0x1000, 0x2000, "a"))
        self.assertEqual(ranges.get_containing_range(0x37ff),
                         (0x3000, 0x3800, "b"))
        self.assertEqual(ranges.get_containing_range(0x2000),
                         (None, None, None))
        self.assertEqual(ranges.get_containing_range(0x10),
                         (None, None, None))

        self.assertEqual(list(ranges),
                         [(0x1000, 0x2000, "a"), (0x3000, 0x3800, "b")])
        self.assertEqual(len(ranges), 2)


class CancellationTokenTest(testlib.PGScanBaseUnitTestCase):

    def testCancel(self):
        token = utils.CancellationToken()
        self.assertFalse(token.cancelled)

        token.Cancel()
        self.assertTrue(token.cancelled)

        token.Reset()
        self.assertFalse(token.cancelled)

    def testCancelFromAnotherThread(self):
        token = utils.CancellationToken()
        thread = threading.Thread(target=token.Cancel)
        thread.start()
        thread.join()

        self.assertTrue(token.cancelled)

    def testSessionToken(self):
        self.session.cancellation.Cancel()
        self.assertTrue(self.session.cancellation.cancelled)


if __name__ == "__main__":
    unittest.main()
