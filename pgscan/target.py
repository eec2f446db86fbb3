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

"""The Memory & Symbol Access Port.

Everything the scanners and decoders know about the kernel being analysed is
obtained through a KernelTarget. A target reads virtual memory, resolves
kernel symbols, searches memory for byte patterns and reports the build banner
and the bugcheck which stopped the machine (if any).
"""
import struct

from pgscan import addrspace
from pgscan import plugin
from pgscan import registry


class KernelTarget(object, metaclass=registry.MetaclassRegistry):
    """Abstract access to a 64 bit Windows kernel image."""

    __abstract = True

    # The user friendly name of this kind of target.
    name = None

    def __init__(self, session=None):
        if session is None:
            raise RuntimeError("Session must be provided.")

        self.session = session

    def read(self, address, length):
        """Read exactly length bytes from the kernel virtual address.

        Raises:
          addrspace.MemoryUnreadable: if any byte of the range is unreadable.
        """
        raise addrspace.MemoryUnreadable(address)

    def read_pointer(self, address):
        return struct.unpack("<Q", self.read(address, 8))[0]

    def read_ulong(self, address):
        return struct.unpack("<I", self.read(address, 4))[0]

    def get_address_by_name(self, name):
        """Resolve a module!symbol name to an address.

        Raises:
          plugin.RequiredSymbolMissing: if the symbol is not known.
        """
        raise plugin.RequiredSymbolMissing(name)

    def search(self, start, length, pattern):
        """Return the address of the first match of pattern in the range.

        A match may start anywhere in [start, start + length).

        Raises:
          plugin.PatternNotFound: if there is no match.
        """
        data = self.read(start, length + len(pattern) - 1)
        offset = data.find(pattern)
        if offset < 0 or offset >= length:
            raise plugin.PatternNotFound(
                "Pattern %s not found in %#x-%#x" % (
                    pattern.hex(), start, start + length))

        return start + offset

    def get_build_banner(self):
        """A "Built by: NNNN.xxx" style version banner or None."""

    def read_bugcheck_data(self):
        """Return the bugcheck code and its four arguments.

        Raises:
          addrspace.MemoryUnreadable: if no bugcheck data is available.
        """
        raise addrspace.MemoryUnreadable(
            0, "No bugcheck data is available for this target.")

    def is_32bit(self):
        return False

    def close(self):
        """Release any resources held by the target."""

    def __str__(self):
        return "<%s>" % self.__class__.__name__
