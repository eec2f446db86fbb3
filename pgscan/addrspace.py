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

"""The base classes for all pgscan address spaces.

An address space exposes a flat range of addresses which may be read. Address
spaces are stacked: a crash dump address space maps physical addresses onto
offsets of the dump file, and the AMD64 address space translates kernel virtual
addresses into physical addresses of the crash dump.

Reads are strict. A read either returns exactly the number of bytes requested
or raises MemoryUnreadable naming the first address which could not be read.
"""
from pgscan import registry
from pgscan import utils


class Error(Exception):
    """Address space errors."""


class ASAssertionError(Error, IOError, AssertionError):
    """The address space failed to instantiate."""


class MemoryUnreadable(Error, IOError):
    """The requested memory is not mapped or could not be read."""

    def __init__(self, address, message=None):
        self.address = address
        super(MemoryUnreadable, self).__init__(
            message or "Memory at %#x is not readable." % address)


class Run(object):
    """A container for runs."""
    __slots__ = ("start", "end", "address_space", "file_offset", "data")

    def __init__(self, start=None, end=None, address_space=None,
                 file_offset=None, data=None):
        self.start = start
        self.end = end
        self.address_space = address_space
        self.file_offset = file_offset
        self.data = data

    def __str__(self):
        if self.file_offset is None:
            return u"<%#x, %#x>" % (self.start, self.end)

        return u"<%#x, %#x> -> %#x @ %s" % (
            self.start, self.end, self.file_offset,
            self.address_space)


class BaseAddressSpace(object, metaclass=registry.MetaclassRegistry):
    """ This is the base class of all Address Spaces. """

    __abstract = True

    # This can be used to name the address space (e.g. process if etc).
    name = ""

    def __init__(self, base=None, session=None, profile=None, **_):
        """Base is the AS we will be stacking on top of, opts are options which
        we may use.

        Args:
          base: A base address space to stack on top of (i.e. delegate to it for
              satisfying read requests).

          session: An optional session object.

          profile: An optional profile to use for parsing the address space
              (e.g. needed for crash dumps).
        """
        if session is None and base is not None:
            session = base.session

        self.base = base
        self.profile = profile
        self.session = session
        if session is None:
            raise RuntimeError("Session must be provided.")

    def as_assert(self, assertion, error=None):
        """Duplicate for the assert command (so that optimizations don't disable
        them)

        It had to be called as_assert, since assert is a keyword
        """
        if not assertion:
            raise ASAssertionError(
                error or "Instantiation failed for unspecified reason")

    def read(self, addr, length):
        """Should be overridden by derived classes."""
        raise MemoryUnreadable(addr)

    def get_mappings(self, start=0, end=2**64):
        """Generates a sequence of Run() objects.

        Each Run object describes a single range transformation from this
        address space to another address space at a potentially different
        mapped_offset.

        Runs are assumed to not overlap and are generated in increasing order.
        """
        _ = start
        _ = end
        return []

    def end(self):
        runs = list(self.get_mappings())
        if runs:
            last_run = runs[-1]
            return last_run.end

    def vtop(self, addr):
        """Return the physical address of this virtual address."""
        # For physical address spaces, this is a noop.
        return addr

    def close(self):
        pass


class BufferAddressSpace(BaseAddressSpace):
    """Specialized address space for internal use.

    Provides transparent reads through to a byte buffer, so that structures
    can be overlaid on data which was already read.
    """

    def __init__(self, base_offset=0, data=b"", **kwargs):
        super(BufferAddressSpace, self).__init__(**kwargs)
        self.data = data
        self.base_offset = base_offset

    def read(self, addr, length):
        offset = addr - self.base_offset
        data = self.data[offset: offset + length]
        if offset < 0 or len(data) != length:
            raise MemoryUnreadable(addr + max(len(data), 0))

        return data

    def get_mappings(self, start=0, end=2**64):
        if self.end() > start and self.base_offset < end:
            yield Run(start=self.base_offset,
                      end=self.end(),
                      file_offset=self.base_offset,
                      address_space=self)

    def __len__(self):
        return len(self.data)

    def end(self):
        """Return the end address of the buffer."""
        return self.base_offset + len(self.data)


class PagedReader(BaseAddressSpace):
    """An address space which reads in page size.

    This automatically takes care of splitting a large read into smaller reads.
    """
    PAGE_SIZE = 0x1000
    PAGE_MASK = ~(PAGE_SIZE - 1)
    __abstract = True

    def _read_chunk(self, vaddr, length):
        """Read bytes from a virtual address.

        Args:
          vaddr: A virtual address to read from.
          length: The number of bytes to read.

        Returns:
          As many bytes as can be read within this page.
        """
        to_read = min(length, self.PAGE_SIZE - (vaddr % self.PAGE_SIZE))
        paddr = self.vtop(vaddr)
        if paddr is None:
            raise MemoryUnreadable(vaddr)

        return self.base.read(paddr, to_read)

    def read(self, addr, length):
        """Read 'length' bytes from the virtual address 'vaddr'."""
        addr, length = int(addr), int(length)

        result = []
        while length > 0:
            buf = self._read_chunk(addr, length)
            if not buf:
                raise MemoryUnreadable(addr)

            result.append(buf)
            addr += len(buf)
            length -= len(buf)

        return b"".join(result)


class RunBasedAddressSpace(PagedReader):
    """An address space which uses a list of runs to specify a mapping.

    This essentially delegates certain address ranges to other address spaces
    "mapped" into this address space.

    The runs are tuples of this form:

    (virtual_address, physical_address, length, address_space)

    - Virtual Address - An address in this address space's virtual address
      space.

    - Physical Address - An address in the delegate address space.

    - Length - The length of the mapped region.

    - Address space - the address space that should be read for this
      region. Note that the physical address above refers to addresses in this
      delegate address space.
    """

    # This is a list of (memory_offset, file_offset, length) tuples.
    runs = None
    __abstract = True

    def __init__(self, **kwargs):
        super(RunBasedAddressSpace, self).__init__(**kwargs)
        self.runs = utils.RangedCollection()

    def add_run(self, virt_addr, file_address, file_len, address_space=None,
                data=None):
        """Add a new run to this address space."""
        if address_space is None:
            address_space = self.base

        start = virt_addr  # Range start
        end = virt_addr + file_len  # Range end

        self.runs.insert(start, end,
                         Run(start=start,
                             end=end,
                             address_space=address_space,
                             file_offset=file_address,
                             data=data))

    def _read_chunk(self, addr, length):
        """Read from addr as much as possible up to a length of length."""
        start, end, run = self.runs.get_containing_range(addr)

        # addr is not in any range.
        if start is None:
            raise MemoryUnreadable(addr)

        # Read as much as we can from this address space.
        available_length = min(end - addr, length)
        file_offset = run.file_offset + addr - start

        return run.address_space.read(file_offset, available_length)

    def vtop(self, addr):
        """Returns the physical address for this virtual address."""
        start, end, run = self.runs.get_containing_range(addr)
        if start is not None:
            if addr < end:
                return run.file_offset + addr - start

    def get_mappings(self, start=0, end=2**64):
        """Yields the mappings.

        Yields: A seqence of Run objects representing each run.
        """
        for _, _, run in self.runs:
            if start > run.end:
                continue

            if run.start > end:
                return

            yield run
