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

"""A cheap test for the high entropy data of an encrypted PatchGuard context.

PatchGuard contexts are encrypted while they wait for their timer, so the
first bytes of the allocation look random: they contain few 0x00 and 0xFF
bytes and many distinct byte values. Only a short sample from the start of
each candidate is examined.
"""
from pgscan import constants


DISTINCTIVE_BYTES = frozenset([0x00, 0xFF])


def DistinctiveCount(data):
    """The number of 0x00 and 0xFF bytes."""
    return sum(1 for x in bytearray(data) if x in DISTINCTIVE_BYTES)


def DistinctByteValueCount(data):
    """The number of different byte values present."""
    return len(set(bytearray(data)))


class RandomnessInfo(object):
    """The randomness evidence of a single candidate."""

    def __init__(self, distinctive_count=0, distinct_byte_value_count=0):
        self.distinctive_count = distinctive_count
        self.distinct_byte_value_count = distinct_byte_value_count

    @classmethod
    def FromData(cls, data):
        return cls(distinctive_count=DistinctiveCount(data),
                   distinct_byte_value_count=DistinctByteValueCount(data))

    def passes(self,
               maximum_distinctive_number=constants.MAXIMUM_DISTINCTIVE_NUMBER,
               minimum_randomness=constants.MINIMUM_RANDOMNESS):
        return (self.distinctive_count <= maximum_distinctive_number and
                self.distinct_byte_value_count >= minimum_randomness)

    def __eq__(self, other):
        return (isinstance(other, RandomnessInfo) and
                self.distinctive_count == other.distinctive_count and
                self.distinct_byte_value_count ==
                other.distinct_byte_value_count)

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((self.distinctive_count, self.distinct_byte_value_count))

    def __repr__(self):
        return "<RandomnessInfo %d:%d>" % (
            self.distinctive_count, self.distinct_byte_value_count)


def IsRandom(data, thresholds=None):
    """Score the sample and apply the thresholds.

    Args:
      data: The sample.
      thresholds: An object with maximum_distinctive_number and
        minimum_randomness attributes (e.g. common.GetScanThresholds()). The
        documented defaults are used if not given.

    Returns:
      A (passed, RandomnessInfo) tuple.
    """
    info = RandomnessInfo.FromData(data)
    if thresholds is None:
        return info.passes(), info

    return info.passes(
        maximum_distinctive_number=thresholds.maximum_distinctive_number,
        minimum_randomness=thresholds.minimum_randomness), info
