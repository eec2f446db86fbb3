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

"""AMD64 4-level paging.

Comments in this module mostly come from the Intel(R) 64 and IA-32
Architectures Software Developer's Manual Volume 3A: System Programming
Guide, Part 1, section "4.5 IA-32E PAGING".
"""
import struct

from pgscan import addrspace


class AMD64PagedMemory(addrspace.PagedReader):
    """Standard AMD 64-bit address space.

    Create a new AMD64 address space to sit on top of the physical address
    space and a Directory Table Base (CR3 value) of 'dtb'.
    """

    valid_mask = 1

    # Is the pagesize flags on?
    page_size_mask = (1 << 7)

    # The number of translations we remember.
    TLB_SIZE = 1000

    def __init__(self, name=None, dtb=None, **kwargs):
        """Instantiate an AMD64 address space over the layered AS.

        Args:
          dtb: The dtb address.
        """
        super(AMD64PagedMemory, self).__init__(**kwargs)

        # We must be stacked on someone else:
        if self.base is None:
            raise TypeError("No base Address Space")

        if dtb is None:
            raise TypeError("No valid DTB specified.")

        self.dtb = dtb
        self.name = (name or 'Kernel AS') + "@%#x" % self.dtb

        # Page aligned virtual address -> page aligned physical address.
        self._tlb = {}

    def read_pte(self, addr):
        """Returns an unsigned 64-bit integer from physical memory.

        If unable to read from that location, returns None.
        """
        try:
            string = self.base.read(addr, 8)
        except addrspace.MemoryUnreadable:
            return None

        return struct.unpack('<Q', string)[0]

    def vtop(self, vaddr):
        """Translates virtual addresses into physical offsets.

        Returns either None (no valid mapping) or the offset in physical memory
        where the address maps.
        """
        vaddr = int(vaddr)
        aligned_vaddr = vaddr & self.PAGE_MASK

        if aligned_vaddr not in self._tlb:
            if len(self._tlb) > self.TLB_SIZE:
                self._tlb.clear()

            self._tlb[aligned_vaddr] = self._translate(aligned_vaddr)

        paddr = self._tlb[aligned_vaddr]
        if paddr is not None:
            return paddr | (vaddr & ~self.PAGE_MASK)

    def _translate(self, vaddr):
        # Bits 51:12 are from CR3
        # Bits 11:3 are bits 47:39 of the linear address
        pml4e_addr = ((self.dtb & 0xffffffffff000) |
                      ((vaddr & 0xff8000000000) >> 36))
        pml4e_value = self.read_pte(pml4e_addr)
        if not pml4e_value or not pml4e_value & self.valid_mask:
            return

        # Bits 51:12 are from the PML4E
        # Bits 11:3 are bits 38:30 of the linear address
        pdpte_addr = ((pml4e_value & 0xffffffffff000) |
                      ((vaddr & 0x7FC0000000) >> 27))
        pdpte_value = self.read_pte(pdpte_addr)
        if not pdpte_value or not pdpte_value & self.valid_mask:
            return

        # Large page mapping.
        if pdpte_value & self.page_size_mask:
            # Bits 51:30 are from the PDE
            # Bits 29:0 are from the original linear address
            return ((pdpte_value & 0xfffffc0000000) |
                    (vaddr & 0x3fffffff))

        # Bits 51:12 are from the PDPTE
        # Bits 11:3 are bits 29:21 of the linear address
        pde_addr = ((pdpte_value & 0xffffffffff000) |
                    ((vaddr & 0x3fe00000) >> 18))
        pde_value = self.read_pte(pde_addr)
        if not pde_value or not pde_value & self.valid_mask:
            return

        if pde_value & self.page_size_mask:
            # Bits 51:21 are from the PDE
            # Bits 20:0 are from the original linear address
            return (pde_value & 0xfffffffe00000) | (vaddr & 0x1fffff)

        # Bits 51:12 are from the PDE
        # Bits 11:3 are bits 20:12 of the original linear address
        pte_addr = (pde_value & 0xffffffffff000) | ((vaddr & 0x1ff000) >> 9)
        pte_value = self.read_pte(pte_addr)
        if not pte_value or not pte_value & self.valid_mask:
            return

        # Bits 51:12 are from the PTE
        # Bits 11:0 are from the original linear address
        return (pte_value & 0xffffffffff000) | (vaddr & 0xfff)
