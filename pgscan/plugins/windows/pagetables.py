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

"""The page table walker.

Windows maps the page tables into kernel virtual memory through a recursive
self-map entry, so every PTE, PDE, PPE and PXE can be read as ordinary kernel
memory once the self-map base (the PTE base) is known. Before Windows 10
RS1 the PTE base was the fixed 0xFFFFF68000000000. Since RS1 it is
randomized, but MmGetVirtualForPhysical embeds it as an immediate operand.
"""
from pgscan import addrspace
from pgscan import constants
from pgscan.plugins.windows import common


# mov rax, [rax+rdx*8]; shl rax, 19h; mov rdx, imm64
PTE_BASE_PATTERN = b"\x48\x8B\x04\xD0\x48\xC1\xE0\x19\x48\xBA"

# How far into MmGetVirtualForPhysical the pattern may start.
PTE_BASE_SEARCH_LENGTH = 0x60


class PageTableUnreadable(addrspace.MemoryUnreadable):
    """A page of page table entries could not be read."""


def ResolvePteBase(session):
    """Find the base of the PTE self-map.

    Raises:
      plugin.RequiredSymbolMissing: if nt!MmGetVirtualForPhysical is unknown.
      plugin.PatternNotFound: if the routine does not load the PTE base.
    """
    build = session.GetParameter("os_build")
    if build < constants.WindowsRS1:
        return constants.LEGACY_PTE_BASE

    target = session.target
    routine = target.get_address_by_name("nt!MmGetVirtualForPhysical")
    match = target.search(routine, PTE_BASE_SEARCH_LENGTH, PTE_BASE_PATTERN)

    return target.read_pointer(match + len(PTE_BASE_PATTERN))


class PteBaseHook(common.AbstractWindowsParameterHook):
    name = "pte_base"

    def calculate(self):
        pte_base = ResolvePteBase(self.session)
        self.session.logging.getChild("PageTables").debug(
            "PTE base is %#x", pte_base)

        return pte_base


class PageTableLayout(object):
    """Address arithmetic of the page table self-map.

    All methods are pure functions of the PTE base.
    """

    def __init__(self, pte_base):
        self.pte_base = pte_base
        self.pde_base = self.MiAddressToPte(pte_base)
        self.ppe_base = self.MiAddressToPte(self.pde_base)
        self.pxe_base = self.MiAddressToPte(self.ppe_base)

        # The last byte of the PXE page.
        self.pxe_top = self.pxe_base + constants.PAGE_SIZE - 1

    def MiAddressToPxe(self, address):
        return self.pxe_base + ((address >> 39) & 0x1FF) * 8

    def MiAddressToPpe(self, address):
        return self.ppe_base + ((address >> 30) & 0x3FFFF) * 8

    def MiAddressToPde(self, address):
        return self.pde_base + ((address >> 21) & 0x7FFFFFF) * 8

    def MiAddressToPte(self, address):
        return self.pte_base + ((address >> 12) & 0xFFFFFFFFF) * 8

    def MiPteToAddress(self, pte_address):
        """The canonical kernel address mapped by the PTE at pte_address."""
        index = ((pte_address - self.pte_base) & constants.ADDRESS_MASK) // 8
        return ((index << 12) | 0xFFFF000000000000) & constants.ADDRESS_MASK

    def PxeTable(self):
        return self.pxe_base

    def PpeTable(self, pxe_index):
        """The page of PPEs mapped by the PXE with this index."""
        return self.ppe_base + constants.PAGE_SIZE * pxe_index

    def PdeTable(self, ppe_index):
        """The page of PDEs mapped by the PPE with this global index."""
        return self.pde_base + constants.PAGE_SIZE * ppe_index

    def PteTable(self, pde_index):
        """The page of PTEs mapped by the PDE with this global index."""
        return self.pte_base + constants.PAGE_SIZE * pde_index

    def __repr__(self):
        return "<PageTableLayout PTE %#x PDE %#x PPE %#x PXE %#x>" % (
            self.pte_base, self.pde_base, self.ppe_base, self.pxe_base)


def GetPageTableLayout(session):
    return PageTableLayout(session.GetParameter("pte_base"))


def ReadPteSlotArray(session, address):
    """Read the page of 512 page table entries at address.

    Raises:
      PageTableUnreadable: if the page can not be read in full.
    """
    try:
        data = session.target.read(
            address, constants.PTE_PER_PAGE * 8)
    except addrspace.MemoryUnreadable as e:
        raise PageTableUnreadable(
            address, "Page table at %#x is unreadable: %s" % (address, e))

    buffer_as = addrspace.BufferAddressSpace(
        base_offset=address, data=data, session=session)

    return session.GetParameter("pool_profile").Object(
        "Array", offset=address, vm=buffer_as, target="_HARDWARE_PTE",
        count=constants.PTE_PER_PAGE)


def ReadPte(session, address):
    """Read a single page table entry.

    Raises:
      addrspace.MemoryUnreadable
    """
    data = session.target.read(address, 8)
    return session.GetParameter("pool_profile").Overlay(
        "_HARDWARE_PTE", data, address)


def IsExecutableWritable(pte):
    return bool(pte.Valid and pte.Write and not pte.NoExecute)


def IsRwxAddress(session, address, layout=None):
    """Is the page or its large page mapping valid, writable and executable?

    Unreadable entries count as not executable.
    """
    layout = layout or GetPageTableLayout(session)
    for entry_address in (layout.MiAddressToPte(address),
                          layout.MiAddressToPde(address)):
        try:
            if IsExecutableWritable(ReadPte(session, entry_address)):
                return True
        except addrspace.MemoryUnreadable:
            continue

    return False


class PTE(common.AbstractWindowsCommandPlugin):
    """Show the page table entries which map an address."""

    __name = "pte"

    __args = [
        dict(name="address", type="Address", positional=True, required=True,
             help="The kernel address to describe."),
    ]

    table_header = [
        dict(name="level", width=4),
        dict(name="entry", style="address", width=18),
        dict(name="pfn", style="hex", width=10),
        dict(name="valid", width=5),
        dict(name="write", width=5),
        dict(name="nx", width=5),
        dict(name="large", width=5),
    ]

    def collect(self):
        layout = GetPageTableLayout(self.session)
        address = self.plugin_args.address

        for level, entry_address in (
                ("PXE", layout.MiAddressToPxe(address)),
                ("PPE", layout.MiAddressToPpe(address)),
                ("PDE", layout.MiAddressToPde(address)),
                ("PTE", layout.MiAddressToPte(address))):
            try:
                pte = ReadPte(self.session, entry_address)
            except addrspace.MemoryUnreadable:
                yield dict(level=level, entry=entry_address)
                break

            yield dict(level=level, entry=entry_address,
                       pfn=pte.PageFrameNumber,
                       valid=bool(pte.Valid), write=bool(pte.Write),
                       nx=bool(pte.NoExecute), large=bool(pte.LargePage))

            if not pte.Valid or pte.LargePage:
                break
