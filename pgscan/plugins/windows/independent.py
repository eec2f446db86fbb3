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

"""Find PatchGuard contexts in independent pages.

Some PatchGuard contexts are allocated directly from the page allocator and
do not appear in any pool table. The only way to find them is to walk the
kernel half of the page tables and examine every page which is mapped
writable and executable with 4kb pages. The first quadword of such an
allocation holds its size.
"""
import collections
import struct

from pgscan import addrspace
from pgscan.plugins.windows import common
from pgscan.plugins.windows import pagetables
from pgscan.plugins.windows import randomness


IndependentPageHit = collections.namedtuple(
    "IndependentPageHit", "va size randomness")

# The size of the allocation is stored in front of the examined data.
SIZE_FIELD_LENGTH = 8


class IndependentPageScanner(object):
    """Walks the page tables of the kernel address range."""

    def __init__(self, session=None, thresholds=None):
        self.session = session
        self.thresholds = thresholds or common.GetScanThresholds(session)
        self.logging = session.logging.getChild("Scanner")

    def check_page(self, va):
        """Returns an IndependentPageHit if the page looks like a context."""
        try:
            data = self.session.target.read(
                va, SIZE_FIELD_LENGTH + self.thresholds.examination_bytes)
        except addrspace.MemoryUnreadable:
            return

        passed, info = randomness.IsRandom(
            data[SIZE_FIELD_LENGTH:], self.thresholds)
        if not passed:
            return

        size = struct.unpack("<Q", data[:SIZE_FIELD_LENGTH])[0]
        if not (self.thresholds.minimum_region_size <= size <=
                self.thresholds.maximum_region_size):
            return

        return IndependentPageHit(va, size, info)

    def scan(self):
        """Walk all PXEs from nt!MmSystemRangeStart to the end of the PXE page.

        Returns:
          A common.ScanResult of IndependentPageHit sorted by address.

        Raises:
          pagetables.PageTableUnreadable: if a page table can not be read.
        """
        target = self.session.target
        system_range_start = target.read_pointer(
            target.get_address_by_name("nt!MmSystemRangeStart"))

        layout = pagetables.GetPageTableLayout(self.session)
        self.logging.debug("Walking page tables from %#x using %r",
                           system_range_start, layout)

        hits = []
        pxes = pagetables.ReadPteSlotArray(self.session, layout.PxeTable())
        pxe_address = layout.MiAddressToPxe(system_range_start)

        while pxe_address < layout.pxe_top:
            pxe_index = (pxe_address - layout.pxe_base) // 8
            pxe_address += 8

            if not pxes[pxe_index].Valid:
                continue

            if self._scan_pxe(layout, pxe_index, hits):
                return common.ScanResult(
                    sorted(hits, key=lambda x: x.va), True)

        return common.ScanResult(sorted(hits, key=lambda x: x.va), False)

    def _scan_pxe(self, layout, pxe_index, hits):
        """Scan everything mapped by a PXE. Returns True when cancelled."""
        ppes = pagetables.ReadPteSlotArray(
            self.session, layout.PpeTable(pxe_index))

        for ppe_offset, ppe in enumerate(ppes):
            # 1gb pages are never independent pages.
            if not ppe.Valid or ppe.LargePage:
                continue

            ppe_index = pxe_index * len(ppes) + ppe_offset
            pdes = pagetables.ReadPteSlotArray(
                self.session, layout.PdeTable(ppe_index))

            for pde_offset, pde in enumerate(pdes):
                if not pde.Valid or pde.LargePage:
                    continue

                pde_index = ppe_index * len(pdes) + pde_offset
                self.session.report_progress(
                    "Walking page table %(table)#x %(spinner)s",
                    table=layout.PteTable(pde_index))

                if self.session.cancellation.cancelled:
                    self.logging.info("Independent page scan cancelled.")
                    return True

                self._scan_pde(layout, pde_index, hits)

        return False

    def _scan_pde(self, layout, pde_index, hits):
        pte_table = layout.PteTable(pde_index)
        ptes = pagetables.ReadPteSlotArray(self.session, pte_table)

        for pte_offset, pte in enumerate(ptes):
            if not pagetables.IsExecutableWritable(pte):
                continue

            va = layout.MiPteToAddress(pte_table + pte_offset * 8)
            hit = self.check_page(va)
            if hit is not None:
                hits.append(hit)


class IndependentPages(common.AbstractWindowsCommandPlugin):
    """Find PatchGuard context candidates in independent pages."""

    __name = "independentpages"

    table_header = [
        dict(name="base", style="address", width=18),
        dict(name="size", style="hex", width=10),
        dict(name="distinctive", align="r", width=11),
        dict(name="randomness", align="r", width=10),
    ]

    def collect(self):
        result = IndependentPageScanner(session=self.session).scan()
        for hit in result.hits:
            yield dict(base=hit.va, size=hit.size,
                       distinctive=hit.randomness.distinctive_count,
                       randomness=hit.randomness.distinct_byte_value_count)

        if result.cancelled:
            self.session.logging.warning("Analysis cancelled.")
