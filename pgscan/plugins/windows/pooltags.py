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

"""Descriptions of pool tags.

The descriptions come from the pooltag.txt file which ships with the
Debugging Tools for Windows. Each line reads:

  Tag  - binary.sys  - Description

Lines starting with // or rem are comments.
"""
from pgscan import config
from pgscan import kb


config.DeclareOption(
    "--pooltag_file", type="String",
    help="The pooltag.txt file from the Debugging Tools for Windows.")


# Allocations from protected pools have the top bit of the tag set.
PROTECTED_POOL = 0x80


def NormalizeTag(tag):
    """Convert a raw 4 byte pool tag to a string."""
    if isinstance(tag, int):
        tag = tag.to_bytes(4, "little")

    tag = bytearray(tag[:4])
    if len(tag) == 4:
        tag[3] &= ~PROTECTED_POOL & 0xFF

    return tag.decode("latin-1").rstrip(" \x00")


def ParsePoolTagFile(fd):
    """Parse the lines of a pooltag.txt file into a dict."""
    result = {}
    for line in fd:
        line = line.strip()
        if not line or line.startswith("//") or line.lower().startswith("rem "):
            continue

        parts = [x.strip() for x in line.split(" - ", 2)]
        if len(parts) < 2:
            continue

        tag = parts[0]
        if len(parts) == 3:
            binary, description = parts[1], parts[2]
        else:
            binary, description = "", parts[1]

        # The first definition of a tag wins.
        result.setdefault(tag, (binary, description))

    return result


class PoolTagDatabaseHook(kb.ParameterHook):
    """Loads the pool tag descriptions once per session."""

    name = "pooltag_database"

    # The file does not depend on the target.
    volatile = False

    def calculate(self):
        filename = self.session.GetParameter("pooltag_file")
        if not filename:
            return {}

        try:
            with open(filename, "rt", encoding="latin-1") as fd:
                return ParsePoolTagFile(fd)
        except IOError as e:
            self.session.logging.debug(
                "Unable to load pool tags from %s: %s", filename, e)
            return {}


class PoolTagNote(object):
    """Looks up the description of pool tags."""

    def __init__(self, session=None):
        self.session = session
        self.tags = session.GetParameter("pooltag_database") or {}

    def get(self, tag):
        """Return a short " [binary] description" note or an empty string."""
        tag = NormalizeTag(tag)
        try:
            binary, description = self.tags[tag]
        except KeyError:
            return ""

        if binary:
            return " [%s] %s" % (binary, description)

        return " %s" % description
