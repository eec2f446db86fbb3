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

"""Address spaces for processing Windows x64 crash dump files.

Both address spaces map physical addresses of the crashed machine onto file
offsets of the dump. They stack on a FileAddressSpace.
"""
import struct

from pgscan import addrspace
from pgscan.plugins.overlays.windows import crashdump


class WindowsCrashDumpSpace64(addrspace.RunBasedAddressSpace):
    """This AS supports the full memory (DumpType 1) crash dump format."""

    PAGE_SIZE = 0x1000

    # Catch a corrupted header early or we will hog all memory trying to parse
    # a huge number of Runs.
    MAX_RUNS = 100

    def __init__(self, **kwargs):
        super(WindowsCrashDumpSpace64, self).__init__(**kwargs)

        self.as_assert(self.base is not None, "No base address space provided")

        # Check the file for sanity.
        self.check_file()

        file_offset = self.header.obj_size

        for run in self.header.PhysicalMemoryBlockBuffer.Run:
            self.add_run(run.BasePage * self.PAGE_SIZE,
                         file_offset,
                         run.PageCount * self.PAGE_SIZE)

            file_offset += run.PageCount * self.PAGE_SIZE

    def check_file(self):
        """Check specifically for 64 bit full crash dumps."""
        # Must start with the magic PAGEDU64
        self.as_assert((self.base.read(0, 8) == b"PAGEDU64"),
                       "Header signature invalid")

        self.profile = crashdump.CrashDump64Profile(session=self.session)
        self.header = self.profile.Object("_DMP_HEADER64", vm=self.base)

        self.as_assert(self.header.DumpType == crashdump.FULL_DUMP,
                       "This is not a full memory crash dump.")

        self.as_assert(
            self.header.PhysicalMemoryBlockBuffer.NumberOfRuns <= self.MAX_RUNS,
            "Too many physical memory runs in the crash dump header.")

    @property
    def dtb(self):
        return self.header.DirectoryTableBase


class WindowsCrashBMP(addrspace.RunBasedAddressSpace):
    """This Address Space supports the bitmap (DumpType 5) crash dump format.

    This format first appeared in Windows 8 x64 versions. The pages present in
    the dump are recorded in a bitmap following the header, and are stored
    consecutively starting at the FirstPage file offset.
    """

    PAGE_SIZE = 0x1000

    def __init__(self, **kwargs):
        super(WindowsCrashBMP, self).__init__(**kwargs)

        self.as_assert(self.base, "Must stack on another address space")

        # Must start with the magic PAGEDU64
        self.as_assert((self.base.read(0, 8) == b"PAGEDU64"),
                       "Header signature invalid")

        self.profile = crashdump.CrashDump64Profile(session=self.session)

        self.header = self.profile.Object("_DMP_HEADER64", vm=self.base)
        self.as_assert(self.header.DumpType == crashdump.BMP_DUMP,
                       "Only BMP dumps supported.")

        self.bmp_header = self.profile.Object(
            "_BMP_DUMP_HEADER", offset=crashdump.HEADER_SIZE, vm=self.base)

        PAGE_SIZE = self.PAGE_SIZE

        # First run [Physical Offset, File Offset, Run length]
        first_page = self.bmp_header.FirstPage
        last_run = [0, first_page, 0]

        for pfn, present in enumerate(self._generate_bitmap()):
            if present:
                if pfn * PAGE_SIZE == last_run[0] + last_run[2]:
                    last_run[2] += PAGE_SIZE

                else:
                    # Dump the last run only if it has non zero length.
                    if last_run[2] > 0:
                        self.add_run(*last_run)

                    # The next run starts here.
                    last_run = [
                        pfn * PAGE_SIZE, last_run[1] + last_run[2], PAGE_SIZE]

        # Flush the last run if needed.
        if last_run[2] > 0:
            self.add_run(*last_run)

    def _generate_bitmap(self):
        """Generate Present/Not Present for each page in the dump."""
        # The bitmap is an array of 32 bit integers. Each bit in each int
        # represents a single memory page.
        bitmap = self.bmp_header.m("Bitmap")
        data = self.base.read(bitmap.obj_offset, bitmap.obj_size)
        pages = self.bmp_header.Pages

        for index, (value,) in enumerate(struct.iter_unpack("<I", data)):
            for bit in range(32):
                if index * 32 + bit >= pages:
                    return

                yield bool(value & (1 << bit))

    @property
    def dtb(self):
        return self.header.DirectoryTableBase
