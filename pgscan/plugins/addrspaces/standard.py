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

""" These are standard address spaces supported by pgscan """
import os
import weakref

from pgscan import addrspace


class FDAddressSpace(addrspace.BaseAddressSpace):
    """An address space which operated on a file like object."""

    def __init__(self, base=None, fhandle=None, **kwargs):
        self.as_assert(base is None, "Base passed to FDAddressSpace.")
        self.as_assert(fhandle is not None, 'file handle must be provided')

        self.fhandle = fhandle
        self.fhandle.seek(0, 2)
        self.fsize = self.fhandle.tell()

        super(FDAddressSpace, self).__init__(**kwargs)

    def read(self, addr, length):
        length = int(length)
        addr = int(addr)
        if addr < 0 or addr + length > self.fsize:
            raise addrspace.MemoryUnreadable(
                addr, "Offset %#x is beyond the end of the file." % addr)

        self.fhandle.seek(addr)
        data = self.fhandle.read(length)
        if len(data) != length:
            raise addrspace.MemoryUnreadable(addr + len(data))

        return data

    def get_mappings(self, start=0, end=2**64):
        _ = end
        yield addrspace.Run(start=0, end=self.fsize,
                            file_offset=0, address_space=self)

    def close(self):
        self.fhandle.close()


class FileAddressSpace(FDAddressSpace):
    """ This is a direct file AS.

    The crash dump address spaces are stacked on top of it.
    """

    def __init__(self, base=None, filename=None, session=None, **kwargs):
        self.as_assert(base is None, 'Must be first Address Space')

        self.session = session
        path = filename or (session and session.GetParameter("filename"))
        self.as_assert(path, "Filename must be specified in session (e.g. "
                       "session.SetParameter('filename', 'MEMORY.DMP').")

        self.name = os.path.basename(path)
        self.fname = os.path.abspath(path)
        self.mode = 'rb'

        fhandle = open(self.fname, self.mode)
        self._closer = weakref.ref(self, lambda x: fhandle.close())

        super(FileAddressSpace, self).__init__(
            fhandle=fhandle, session=session, **kwargs)

    def __str__(self):
        return "<%s %s>" % (self.__class__.__name__, self.fname)
