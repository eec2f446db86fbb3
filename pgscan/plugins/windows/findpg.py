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

"""Locate PatchGuard contexts in kernel memory.

The search runs in two phases: the big pool table first and then the page
tables. Both phases can be interrupted with Ctrl+C, in which case the
candidates found so far are still shown.
"""
from pgscan.plugins.windows import bigpools
from pgscan.plugins.windows import common
from pgscan.plugins.windows import independent
from pgscan.plugins.windows import pooltags


class FindPG(common.AbstractWindowsCommandPlugin):
    """Displays base addresses of PatchGuard pages."""

    __name = "findpg"

    def find_big_pools(self):
        """Phase 1: the big pool table."""
        self.check_target()

        # Fail early if the page tables can not be located.
        self.session.GetParameter("pte_base")

        result = bigpools.BigPoolScanner(session=self.session).scan()
        self.session.logging.info(
            "Phase 1 found %d candidates.", len(result.hits))

        return result

    def find_independent_pages(self):
        """Phase 2: executable pages outside the big pool table."""
        return independent.IndependentPageScanner(session=self.session).scan()

    def find(self):
        """Run both phases.

        Returns:
          A (big pool ScanResult, independent page ScanResult) tuple. If the
          big pool phase was cancelled the independent page phase does not
          run.
        """
        big_pool_result = self.find_big_pools()
        if big_pool_result.cancelled:
            return big_pool_result, common.ScanResult([], True)

        return big_pool_result, self.find_independent_pages()

    def render(self, renderer):
        self.check_target()

        renderer.format(
            "Wait until analysis is completed. It typically takes 2-5 "
            "minutes.\n")
        renderer.format("Or press Ctrl+C to stop analysis.\n")

        # Each phase is reported as soon as it completes so a failure in the
        # page table walk still leaves the phase 1 line behind.
        big_pool_result = self.find_big_pools()
        if big_pool_result.cancelled:
            independent_result = common.ScanResult([], True)
        else:
            renderer.format("Phase 1 analysis has been done. [BigPagePool]\n")
            renderer.flush()

            independent_result = self.find_independent_pages()
            if not independent_result.cancelled:
                renderer.format(
                    "Phase 2 analysis has been done. [IndependentPages]\n")

        if big_pool_result.cancelled or independent_result.cancelled:
            renderer.format("Analysis cancelled.\n")

        tags = pooltags.PoolTagNote(session=self.session)
        for hit in big_pool_result.hits:
            renderer.format(
                "[BigPagePool] PatchGuard context page base: {0:addrpad}, "
                "size: 0x{1:08x}, Randomness {2:3d}:{3:3d},{4}\n",
                hit.va, hit.number_of_bytes,
                hit.randomness.distinctive_count,
                hit.randomness.distinct_byte_value_count,
                tags.get(hit.tag))

        for hit in independent_result.hits:
            renderer.format(
                "[Independent] PatchGuard context page base: {0:addrpad}, "
                "Size: 0x{1:08x}, Randomness {2:3d}:{3:3d},\n",
                hit.va, hit.size,
                hit.randomness.distinctive_count,
                hit.randomness.distinct_byte_value_count)
