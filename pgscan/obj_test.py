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
from pgscan import obj
from pgscan import plugin
from pgscan import testlib


TEST_VTYPES = {
    '_TEST': [0x20, {
        'Flags': [0x0, ['unsigned long']],
        'Low': [0x0, ['BitField', dict(start_bit=0, end_bit=4)]],
        'High': [0x0, ['BitField', dict(start_bit=28, end_bit=32)]],
        'Pointer': [0x8, ['pointer', ['_TEST']]],
        'Tag': [0x10, ['String', dict(length=4, term=None)]],
        'Name': [0x14, ['String', dict(length=4)]],
        'Words': [0x18, ['array', 4, ['unsigned short']]],
    }],
}


class ObjTestProfile(obj.Profile):
    def __init__(self, **kwargs):
        super(ObjTestProfile, self).__init__(**kwargs)
        self.add_types(TEST_VTYPES)


class ProfileTest(testlib.PGScanBaseUnitTestCase):
    """Tests for struct overlays."""

    def setUp(self):
        super(ProfileTest, self).setUp()
        self.profile = ObjTestProfile(session=self.session)
        self.data = struct.pack("<IxxxxQ4s4s4H", 0xA0000005,
                                0xfffff80002a10000, b"Ab\x00d", b"xy\x00z",
                                1, 2, 3, 4)

    def testOverlay(self):
        test = self.profile.Overlay("_TEST", self.data, 0x1000)

        self.assertEqual(test.obj_offset, 0x1000)
        self.assertEqual(test.Flags, 0xA0000005)
        self.assertEqual(test.Low, 5)
        self.assertEqual(test.High, 0xA)
        self.assertEqual(test.Pointer, 0xfffff80002a10000)
        self.assertEqual(test.m("Tag").v(), b"Ab\x00d")
        self.assertEqual(test.m("Name").v(), b"xy")
        self.assertEqual(test.Words.v(), [1, 2, 3, 4])
        self.assertEqual(test.Words[3].v(), 4)
        self.assertEqual(len(test.Words), 4)

    def testMemberObjects(self):
        test = self.profile.Overlay("_TEST", self.data, 0x1000)

        pointer = test.m("Pointer")
        self.assertIsInstance(pointer, obj.Pointer)
        self.assertEqual(pointer.obj_offset, 0x1008)
        self.assertEqual(pointer.target, "_TEST")
        self.assertEqual(pointer.v(), 0xfffff80002a10000)

        self.assertRaises(AttributeError, test.m, "Missing")
        self.assertRaises(IndexError, test.Words.__getitem__, 4)

    def testShortBuffer(self):
        self.assertRaises(plugin.DecodeError, self.profile.Overlay,
                          "_TEST", self.data[:-1])
        self.assertRaises(plugin.DecodeError, self.profile.Overlay,
                          "_TEST", None)

    def testSizesAndOffsets(self):
        self.assertEqual(self.profile.get_obj_size("_TEST"), 0x20)
        self.assertEqual(self.profile.get_obj_size("unsigned short"), 2)
        self.assertEqual(self.profile.get_obj_offset("_TEST", "Tag"), 0x10)

        self.assertRaises(plugin.DecodeError,
                          self.profile.get_obj_size, "_MISSING")
        self.assertRaises(plugin.DecodeError,
                          self.profile.get_obj_offset, "_TEST", "Missing")

    def testArrayOverAddressSpace(self):
        buffer_as = addrspace.BufferAddressSpace(
            base_offset=0x2000, data=self.data * 2, session=self.session)
        array = self.profile.Object("Array", offset=0x2000, vm=buffer_as,
                                    target="_TEST", count=2)

        self.assertEqual([x.Low for x in array], [5, 5])
        self.assertEqual(array[1].obj_offset, 0x2020)
        self.assertEqual(array.obj_size, 0x40)

    def testOverride(self):
        self.profile.add_types({
            '_TEST': [None, {
                'Extra': [0x1c, ['unsigned long']],
            }],
        })

        test = self.profile.Overlay("_TEST", self.data)
        self.assertEqual(self.profile.get_obj_size("_TEST"), 0x20)
        self.assertEqual(test.Extra, 3 | (4 << 16))
        self.assertEqual(test.Flags, 0xA0000005)


if __name__ == "__main__":
    unittest.main()
