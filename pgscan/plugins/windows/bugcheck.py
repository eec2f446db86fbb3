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

"""Decoding of the CRITICAL_STRUCTURE_CORRUPTION (0x109) bugcheck.

The first two bugcheck arguments are the address of the PatchGuard context
and the address of the data which failed validation, each offset by a fixed
key. The last two arguments are the failure dependent information and the
type of the corrupted region, which are not obfuscated.
"""
import collections

from pgscan import constants


BugcheckInfo = collections.namedtuple(
    "BugcheckInfo", "context reason failure_dependent corruption_type")


def DecodeBugcheck(arg0, arg1, arg2, arg3):
    """Recover the context and reason from raw 0x109 bugcheck arguments.

    A reason of zero is not offset by the key.
    """
    context = (arg0 - constants.BUGCHECK_109_ARGS0_KEY) & constants.ADDRESS_MASK
    reason = 0
    if arg1:
        reason = (arg1 - constants.BUGCHECK_109_ARGS1_KEY) & (
            constants.ADDRESS_MASK)

    return BugcheckInfo(context, reason, arg2, arg3)


def EncodeBugcheck(context, reason, failure_dependent, corruption_type):
    """The arguments the kernel passes to KeBugCheckEx()."""
    arg1 = 0
    if reason:
        arg1 = (reason + constants.BUGCHECK_109_ARGS1_KEY) & (
            constants.ADDRESS_MASK)

    return ((context + constants.BUGCHECK_109_ARGS0_KEY) &
            constants.ADDRESS_MASK, arg1, failure_dependent, corruption_type)


# The region types documented for bugcheck 0x109 and those found since.
CORRUPTION_TYPES = {
    0x00: "A generic data region",
    0x01: "A function modification or the Itanium-based function location",
    0x02: "A processor interrupt dispatch table (IDT)",
    0x03: "A processor global descriptor table (GDT)",
    0x04: "A type-1 process list corruption",
    0x05: "A type-2 process list corruption",
    0x06: "A debug routine modification",
    0x07: "A critical MSR modification",
    0x08: "Object type",
    0x09: "A processor IVT",
    0x0A: "Modification of a system service function",
    0x0B: "A generic session data region",
    0x0C: "Modification of a session function or .pdata",
    0x0D: "Modification of an import table",
    0x0E: "Modification of a session import table",
    0x0F: "Ps Win32 callout modification",
    0x10: "Debug switch routine modification",
    0x11: "IRP allocator modification",
    0x12: "Driver call dispatcher modification",
    0x13: "IRP completion dispatcher modification",
    0x14: "IRP deallocator modification",
    0x15: "A processor control register",
    0x16: "Critical floating point control register modification",
    0x17: "Local APIC modification",
    0x18: "Kernel notification callout modification",
    0x19: "Loaded module list modification",
    0x1A: "Type 3 process list corruption",
    0x1B: "Type 4 process list corruption",
    0x1C: "Driver object corruption",
    0x1D: "Executive callback object modification",
    0x1E: "Modification of module padding",
    0x1F: "Modification of a protected process",
    0x20: "A generic data region",
    0x21: "A page hash mismatch",
    0x22: "A session page hash mismatch",
    0x23: "Load config directory modification",
    0x24: "Inverted function table modification",
    0x25: "Session configuration modification",
    0x26: "An extended processor control register",
    0x27: "Type 1 pool corruption",
    0x28: "Type 2 pool corruption",
    0x29: "Type 3 pool corruption",
    0x2A: "Type 4 pool corruption",
    0x2B: "Modification of a function or .pdata",
    0x2C: "Image integrity corruption",
    0x2D: "Processor misconfiguration",
    0x2E: "Type 5 process list corruption",
    0x2F: "Process shadow corruption",
    0x101: "General pool corruption",
    0x102: "Modification of win32k.sys",
    0x103: "MmAttachSession failure",
    0x104: "KeInsertQueueApc failure",
    0x105: "RtlImageNtHeader failure",
    0x106: "CcBcbProfiler detected modification",
    0x107: "KiTableInformation corruption",
    0x108: "Not investigated :(",
    0x109: "Type 2 context modification",
    0x10E: "Inconsistency between before and after sleeping",
}

# The context has not detected a corruption.
NOT_APPLICABLE = "N/A"

UNKNOWN_TYPE = "Unknown :("

# CcBcbProfiler reports corruption without a PatchGuard context.
CCBCB_PROFILER_TYPE = 0x106


def GetCorruptionTypeString(corruption_type, available=True):
    if not available:
        return NOT_APPLICABLE

    return CORRUPTION_TYPES.get(corruption_type, UNKNOWN_TYPE)


BANNER = """\
*******************************************************************************
*                                                                             *
*                        PatchGuard Bugcheck Analysis                         *
*                                                                             *
*******************************************************************************

CRITICAL_STRUCTURE_CORRUPTION (0x109)
"""
