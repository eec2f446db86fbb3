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

"""Constants shared by the PatchGuard context scanners and decoders."""
import enum

from pgscan import _version

VERSION = _version.get_versions()["pep440"]
CODENAME = _version.get_versions()["codename"]

# Log domain subsystems. Various components will send log messages to these
# subsystems. These are useful for targeted debugging.
LOG_DOMAINS = ["PageTables", "Scanner"]

PAGE_SIZE = 0x1000

# Number of 8 byte entries in one page table page.
PTE_PER_PAGE = 0x200

# The number of bytes sampled from the start of every candidate region.
EXAMINATION_BYTES = 100

# A sample with more than this many 0x00 or 0xFF bytes is ordinary data.
MAXIMUM_DISTINCTIVE_NUMBER = 5

# A sample must hold at least this many distinct byte values.
MINIMUM_RANDOMNESS = 50

# Candidate regions outside of this range are never PatchGuard contexts.
MINIMUM_REGION_SIZE = 0x004000
MAXIMUM_REGION_SIZE = 0xf00000

# Bugcheck 0x109 obfuscates its first two arguments with these keys.
BUGCHECK_109_ARGS0_KEY = 0xA3A03F5891C8B4E8
BUGCHECK_109_ARGS1_KEY = 0xB3B74BDEE4453415

CRITICAL_STRUCTURE_CORRUPTION = 0x109

# Progress is reported once per this many big pool table rows.
BIG_POOL_PROGRESS_INTERVAL = 0x1000

# The fixed page table self-map base used before Windows 10 RS1.
LEGACY_PTE_BASE = 0xFFFFF68000000000

ADDRESS_MASK = 0xFFFFFFFFFFFFFFFF


class OSBuild(enum.IntEnum):
    """Windows kernel generations, ordered by their build numbers."""
    Unknown = 0
    WindowsXP64 = 3790
    WindowsVista = 6000
    WindowsVista_SP1 = 6001
    WindowsVista_SP2 = 6002
    Windows7 = 7600
    Windows7_SP1 = 7601
    Windows8 = 9200
    Windows8_1 = 9600
    Windows10_1507 = 10240
    Windows10_1511 = 10586
    Windows10_1607 = 14393
    Windows10_1703 = 15063
    Windows10_1709 = 16299
    Windows10_1803 = 17134


# Windows 10 first shipped as 1507.
Windows10 = OSBuild.Windows10_1507

# RS1 randomized the page table self-map.
WindowsRS1 = OSBuild.Windows10_1607

BANNER_PREFIX = "Built by: %d."


def ClassifyBuild(banner):
    """Map a "Built by: NNNN.xxx" version banner to an OSBuild.

    Returns OSBuild.Unknown for banners which do not start with a known
    build number.
    """
    if not banner:
        return OSBuild.Unknown

    for build in OSBuild:
        if build is OSBuild.Unknown:
            continue

        if banner.startswith(BANNER_PREFIX % build.value):
            return build

    return OSBuild.Unknown


BANNER = """
----------------------------------------------------------------------------
pgscan %s (%s) - PatchGuard context discovery for Windows kernel memory.

This program is free software; you can redistribute it and/or modify it under
the terms of the GNU General Public License.
----------------------------------------------------------------------------
""" % (VERSION, CODENAME)
