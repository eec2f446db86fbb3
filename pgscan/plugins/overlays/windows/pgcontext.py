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

"""PatchGuard context structure layouts.

Every PatchGuard context starts with a copy of CmpAppendDllSection (the code
which decrypts the rest of the context) followed by a data section whose
location moves with each kernel release. The data section layout itself is
stable:

  Prcb, DcpRoutineToBeScheduled, WorkerRoutine, IsTriggered,
  BugCheckArg0-3, PGPageBase, NumberOfProtectCodes, NumberOfProtectValues,
  the 32 bit offsets of a few functions copied into the context, and (since
  Windows 8) the table of protected strings.

The protected code table directly follows the context structure, and the
protected value table directly follows the protected codes.

These layouts were reconstructed by hand and only describe the fields the
decoder reports.
"""
from pgscan import constants
from pgscan import obj


# The size of the CmpAppendDllSection copy at the start of every context.
HEADER_SIZE = 0xC8

# The size of one protected code entry.
PROTECT_CODE_SIZE = 0x30


common_vtypes = {
    '_PGProtectCode': [PROTECT_CODE_SIZE, {
        'Type': [0x0, ['unsigned long']],
        'Address': [0x8, ['unsigned long long']],
        'Size': [0x10, ['unsigned long']],
        'Checksum': [0x14, ['unsigned long']],
    }],

    '_PGProtectStrings': [0x48, {
        'NumberOfStrings': [0x0, ['unsigned long']],
        'Strings': [0x8, ['array', 8, ['unsigned long long']]],
    }],
}


def _PGContextVtype(data_offset, size, protect_code2=False,
                    fsrtl_unknown=False, protect_strings=False):
    """Describe a _PGContext whose data section starts at data_offset."""
    members = {
        'CmpAppendDllSection': [0x0, ['array', 0xC0, ['unsigned char']]],
        'CmpAppendDllSectionEnd': [0xC0, ['unsigned long']],
        'ContextSizeInQWord': [0xC4, ['unsigned long']],

        'Prcb': [data_offset + 0x0, ['pointer', ['_KPRCB']]],
        'DcpRoutineToBeScheduled': [data_offset + 0x8, ['unsigned long long']],
        'WorkerRoutine': [data_offset + 0x10, ['unsigned long long']],
        'IsTriggered': [data_offset + 0x18, ['unsigned long']],
        'BugCheckArg0': [data_offset + 0x20, ['unsigned long long']],
        'BugCheckArg1': [data_offset + 0x28, ['unsigned long long']],
        'BugCheckArg2': [data_offset + 0x30, ['unsigned long long']],
        'BugCheckArg3': [data_offset + 0x38, ['unsigned long long']],
        'PGPageBase': [data_offset + 0x40, ['unsigned long long']],
        'NumberOfProtectCodes': [data_offset + 0x48, ['unsigned long']],
        'NumberOfProtectValues': [data_offset + 0x4C, ['unsigned long']],
        'OffsetOfPGSelfValidation': [data_offset + 0x50, ['unsigned long']],
        'OffsetOfRtlLookupFunctionEntryEx': [
            data_offset + 0x54, ['unsigned long']],
        'OffsetOfFsRtlUninitializeSmallMcb': [
            data_offset + 0x58, ['unsigned long']],
    }

    if protect_code2:
        members['OffsetOfPGProtectCode2Table'] = [
            data_offset + 0x5C, ['unsigned long']]

    strings_offset = data_offset + 0x60
    if fsrtl_unknown:
        members['OffsetOfFsRtlUnknown0'] = [
            data_offset + 0x60, ['unsigned long']]
        members['OffsetOfFsRtlUnknown1'] = [
            data_offset + 0x64, ['unsigned long']]
        strings_offset = data_offset + 0x68

    if protect_strings:
        members['PGProtectStrings'] = [strings_offset, ['_PGProtectStrings']]

    return {'_PGContext': [size, members]}


# Build -> (data section offset, structure size, layout flags).
CONTEXT_LAYOUTS = {
    constants.OSBuild.Windows7_SP1: _PGContextVtype(
        0x2C0, 0x320, protect_code2=True),

    constants.OSBuild.Windows8: _PGContextVtype(
        0x3A8, 0x450, protect_strings=True),

    constants.OSBuild.Windows10_1507: _PGContextVtype(
        0x5C8, 0x678, fsrtl_unknown=True, protect_strings=True),

    constants.OSBuild.Windows10_1511: _PGContextVtype(
        0x5F0, 0x6A0, fsrtl_unknown=True, protect_strings=True),

    constants.OSBuild.Windows10_1607: _PGContextVtype(
        0x630, 0x6E0, fsrtl_unknown=True, protect_strings=True),

    constants.OSBuild.Windows10_1703: _PGContextVtype(
        0x688, 0x738, fsrtl_unknown=True, protect_strings=True),

    constants.OSBuild.Windows10_1709: _PGContextVtype(
        0x6F8, 0x7A8, fsrtl_unknown=True, protect_strings=True),

    constants.OSBuild.Windows10_1803: _PGContextVtype(
        0x740, 0x7F0, fsrtl_unknown=True, protect_strings=True),
}


class PGContextProfile(obj.Profile):
    """The _PGContext layout of a single kernel release."""

    def __init__(self, layout=None, **kwargs):
        super(PGContextProfile, self).__init__(**kwargs)
        self.layout = layout
        self.add_types(common_vtypes)
        self.add_types(CONTEXT_LAYOUTS[layout])
