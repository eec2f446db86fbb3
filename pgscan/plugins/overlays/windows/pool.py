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

"""Page table entries and the big pool tracking table."""
from pgscan import constants
from pgscan import obj


common_vtypes = {
    '_HARDWARE_PTE': [0x8, {
        'Valid': [0x0, ['BitField', dict(
            start_bit=0, end_bit=1, native_type='unsigned long long')]],
        'Write': [0x0, ['BitField', dict(
            start_bit=1, end_bit=2, native_type='unsigned long long')]],
        'Owner': [0x0, ['BitField', dict(
            start_bit=2, end_bit=3, native_type='unsigned long long')]],
        'LargePage': [0x0, ['BitField', dict(
            start_bit=7, end_bit=8, native_type='unsigned long long')]],
        'Global': [0x0, ['BitField', dict(
            start_bit=8, end_bit=9, native_type='unsigned long long')]],
        'PageFrameNumber': [0x0, ['BitField', dict(
            start_bit=12, end_bit=48, native_type='unsigned long long')]],
        'NoExecute': [0x0, ['BitField', dict(
            start_bit=63, end_bit=64, native_type='unsigned long long')]],
    }],
}

# Windows 7 and 8.
vtypes_pre_win10 = {
    '_POOL_TRACKER_BIG_PAGES': [0x18, {
        'Va': [0x0, ['unsigned long long']],
        'Key': [0x8, ['String', dict(length=4, term=None)]],
        'PoolType': [0xc, ['unsigned long']],
        'NumberOfBytes': [0x10, ['unsigned long long']],
    }],
}

# Windows 10 packs the pool type into a bit field.
vtypes_win10 = {
    '_POOL_TRACKER_BIG_PAGES': [0x18, {
        'Va': [0x0, ['unsigned long long']],
        'Key': [0x8, ['String', dict(length=4, term=None)]],
        'Pattern': [0xc, ['BitField', dict(
            start_bit=0, end_bit=8, native_type='unsigned long')]],
        'PoolType': [0xc, ['BitField', dict(
            start_bit=8, end_bit=20, native_type='unsigned long')]],
        'SlushSize': [0xc, ['BitField', dict(
            start_bit=20, end_bit=32, native_type='unsigned long')]],
        'NumberOfBytes': [0x10, ['unsigned long long']],
    }],
}


# The POOL_TYPE values of non paged pools.
NON_PAGED_POOL_TYPES = frozenset([
    0,    # NonPagedPool
    2,    # NonPagedPoolMustSucceed
    4,    # NonPagedPoolCacheAligned
    6,    # NonPagedPoolCacheAlignedMustS
    32,   # NonPagedPoolSession
    34,   # NonPagedPoolMustSucceedSession
    36,   # NonPagedPoolCacheAlignedSession
    512,  # NonPagedPoolNx
    516,  # NonPagedPoolNxCacheAligned
    544,  # NonPagedPoolSessionNx
])


class PoolProfile(obj.Profile):
    """Pool and page table structures for a kernel generation.

    The big page table row layout is selected by the OS build.
    """

    def __init__(self, build=constants.OSBuild.Unknown, **kwargs):
        super(PoolProfile, self).__init__(**kwargs)
        self.build = build
        self.add_types(common_vtypes)

        if build >= constants.Windows10:
            self.add_types(vtypes_win10)
        else:
            self.add_types(vtypes_pre_win10)
