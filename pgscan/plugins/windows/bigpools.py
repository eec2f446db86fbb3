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

"""Find PatchGuard contexts among the big pool allocations.

PatchGuard allocates most of its contexts from non-paged pool. Allocations
larger than a page are tracked in the big page table (nt!PoolBigPageTable),
so each row is a candidate. A row is reported when the allocation is
non-paged, of a plausible size, mapped writable and executable, and starts
with random looking data.
"""
import collections

from pgscan import addrspace
from pgscan import constants
from pgscan.plugins.overlays.windows import pool
from pgscan.plugins.windows import common
from pgscan.plugins.windows import pagetables
from pgscan.plugins.windows import pooltags
from pgscan.plugins.windows import randomness


BigPoolHit = collections.namedtuple(
    "BigPoolHit", "va number_of_bytes tag pool_type randomness")


class BigPoolScanner(object):
    """Scans the rows of the big page table."""

    def __init__(self, session=None, thresholds=None):
        self.session = session
        self.thresholds = thresholds or common.GetScanThresholds(session)
        self.logging = session.logging.getChild("Scanner")

    def read_table(self):
        """Read the whole big page table.

        Raises:
          plugin.RequiredSymbolMissing: if the table symbols are unknown.
          addrspace.MemoryUnreadable: if the table can not be read.
        """
        target = self.session.target
        table_size = target.read_pointer(
            target.get_address_by_name("nt!PoolBigPageTableSize"))
        table_base = target.read_pointer(
            target.get_address_by_name("nt!PoolBigPageTable"))

        profile = self.session.GetParameter("pool_profile")
        entry_size = profile.get_obj_size("_POOL_TRACKER_BIG_PAGES")

        self.logging.debug("Big page table at %#x has %d rows.",
                           table_base, table_size)

        data = target.read(table_base, table_size * entry_size)
        table_as = addrspace.BufferAddressSpace(
            base_offset=table_base, data=data, session=self.session)

        return profile.Object(
            "Array", offset=table_base, vm=table_as,
            target="_POOL_TRACKER_BIG_PAGES", count=table_size)

    def check_entry(self, entry, layout):
        """Returns a BigPoolHit if the row looks like a PatchGuard context."""
        va = entry.Va

        # Freed rows have the low bit set.
        if not va or va & 1:
            return

        number_of_bytes = entry.NumberOfBytes
        if not (self.thresholds.minimum_region_size <= number_of_bytes <=
                self.thresholds.maximum_region_size):
            return

        if entry.PoolType not in pool.NON_PAGED_POOL_TYPES:
            return

        if not pagetables.IsRwxAddress(self.session, va, layout=layout):
            return

        try:
            data = self.session.target.read(
                va, self.thresholds.examination_bytes)
        except addrspace.MemoryUnreadable:
            self.logging.debug("Big pool allocation %#x is unreadable.", va)
            return

        passed, info = randomness.IsRandom(data, self.thresholds)
        if not passed:
            return

        return BigPoolHit(va, number_of_bytes, entry.m("Key").v(),
                          entry.PoolType, info)

    def scan(self):
        """Scan the big page table.

        Returns:
          A common.ScanResult of BigPoolHit sorted by address.
        """
        table = self.read_table()
        layout = pagetables.GetPageTableLayout(self.session)
        cancellation = self.session.cancellation

        hits = []
        for index, entry in enumerate(table):
            if index % constants.BIG_POOL_PROGRESS_INTERVAL == 0:
                self.session.report_progress(
                    "Scanning big pool row %(index)d of %(total)d "
                    "%(spinner)s", index=index, total=len(table))

                if cancellation.cancelled:
                    self.logging.info(
                        "Big pool scan cancelled at row %d.", index)
                    return common.ScanResult(
                        sorted(hits, key=lambda x: x.va), True)

            hit = self.check_entry(entry, layout)
            if hit is not None:
                hits.append(hit)

        return common.ScanResult(sorted(hits, key=lambda x: x.va), False)


class BigPools(common.AbstractWindowsCommandPlugin):
    """Find PatchGuard context candidates in the big page pool."""

    __name = "bigpools"

    table_header = [
        dict(name="base", style="address", width=18),
        dict(name="size", style="hex", width=10),
        dict(name="distinctive", align="r", width=11),
        dict(name="randomness", align="r", width=10),
        dict(name="tag", width=4),
        dict(name="description"),
    ]

    def collect(self):
        result = BigPoolScanner(session=self.session).scan()
        tags = pooltags.PoolTagNote(session=self.session)

        for hit in result.hits:
            yield dict(base=hit.va, size=hit.number_of_bytes,
                       distinctive=hit.randomness.distinctive_count,
                       randomness=hit.randomness.distinct_byte_value_count,
                       tag=pooltags.NormalizeTag(hit.tag),
                       description=tags.get(hit.tag).strip())

        if result.cancelled:
            self.session.logging.warning("Analysis cancelled.")
