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

"""Structures of the Windows x64 crash dump file format."""
from pgscan import obj


# Dump types found in _DMP_HEADER64.DumpType.
FULL_DUMP = 1
KERNEL_DUMP = 2
BMP_DUMP = 5

DUMP_TYPES = {
    FULL_DUMP: "Full Dump",
    KERNEL_DUMP: "Kernel Dump",
    BMP_DUMP: "BMP Dump",
}

# The header of the file is followed by the dumped pages.
HEADER_SIZE = 0x2000


vtypes64 = {
    '_DMP_HEADER64' : [0x2000, {
        'Signature' : [0x0, ['String', dict(length=8, term=None)]],
        'MajorVersion' : [0x8, ['unsigned long']],
        'MinorVersion' : [0xc, ['unsigned long']],
        'DirectoryTableBase' : [0x10, ['unsigned long long']],
        'PfnDataBase' : [0x18, ['unsigned long long']],
        'PsLoadedModuleList' : [0x20, ['unsigned long long']],
        'PsActiveProcessHead' : [0x28, ['unsigned long long']],
        'MachineImageType' : [0x30, ['unsigned long']],
        'NumberProcessors' : [0x34, ['unsigned long']],
        'BugCheckCode' : [0x38, ['unsigned long']],
        'BugCheckCodeParameter' : [0x40, ['array', 4, ['unsigned long long']]],
        'KdDebuggerDataBlock' : [0x80, ['unsigned long long']],
        'PhysicalMemoryBlockBuffer' : [0x88, ['_PHYSICAL_MEMORY_DESCRIPTOR']],
        'DumpType' : [0xf98, ['unsigned long']],
        'RequiredDumpSpace' : [0xfa0, ['unsigned long long']],
        'SystemTime' : [0xfa8, ['unsigned long long']],
        'SystemUpTime' : [0x1030, ['unsigned long long']],
    }],

    '_PHYSICAL_MEMORY_DESCRIPTOR' : [0x20, {
        'NumberOfRuns' : [0x0, ['unsigned long']],
        'NumberOfPages' : [0x8, ['unsigned long long']],
        'Run' : [0x10, ['Array', dict(
            count=lambda x: x.NumberOfRuns,
            target='_PHYSICAL_MEMORY_RUN')]],
    }],

    '_PHYSICAL_MEMORY_RUN' : [0x10, {
        'BasePage' : [0x0, ['unsigned long long']],
        'PageCount' : [0x8, ['unsigned long long']],
    }],

    # NOTE: The following struct is reversed by looking the a crash dump
    # file. Therefore the names are probably not consistent with the windows
    # source code.
    '_BMP_DUMP_HEADER': [0x38, {
        # Should be SDMP or FDMP
        'Signature': [0x0, ['String', dict(length=4, term=None)]],

        # Should be DUMP
        'ValidDump': [0x4, ['String', dict(length=4, term=None)]],

        # The offset of the first page in the file.
        'FirstPage': [0x20, ['unsigned long long']],

        # Total number of pages present in the bitmap.
        'TotalPresentPages': [0x28, ['unsigned long long']],

        # Total number of pages in image. This dictates the total size of the
        # bitmap. This is not the same as the TotalPresentPages which is only
        # the sum of the bits set to 1.
        'Pages': [0x30, ['unsigned long long']],

        'Bitmap': [0x38, ['Array', dict(
            count=lambda x: (x.Pages + 31) // 32,
            target="unsigned int",
            )]],
        }],
}


class CrashDump64Profile(obj.Profile):
    """A profile for the 64 bit crash dump header."""

    def __init__(self, **kwargs):
        super(CrashDump64Profile, self).__init__(**kwargs)
        self.add_types(vtypes64)
