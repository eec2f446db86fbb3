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

"""Decode PatchGuard contexts.

The layout of a PatchGuard context changes with every kernel release, so the
decoder is selected by the OS build. Each decoder reads the context, resolves
the offsets stored in it into addresses and produces a PGContextRecord. The
record is the same for all builds; fields a build does not have are None.
"""
from pgscan import addrspace
from pgscan import constants
from pgscan import plugin
from pgscan import utils
from pgscan.plugins.overlays.windows import pgcontext
from pgscan.plugins.windows import bugcheck
from pgscan.plugins.windows import common


class PGContextRecord(utils.AttributeDict):
    """The normalized fields of a decoded PatchGuard context.

    Members:
      context, reason, failure_dependent, corruption_type: As decoded from
        the bugcheck arguments (the caller's or the context's own).
      available: The context's trigger flag.
      type_string: The description of corruption_type.
      page_base, prcb, dpc_routine, worker_routine: Copied from the context.
      self_validation, rtl_lookup_function_entry_ex,
      fsrtl_uninitialize_small_mcb, fsrtl_mdl_read_complete_dev_ex: Addresses
        of the routines copied into the context.
      protect_code2_table: Windows 7 only.
      fsrtl_unknown0, fsrtl_unknown1: Windows 10 only.
      context_size_in_bytes: The claimed size of the context.
      number_of_protect_codes, number_of_protect_values,
      protect_codes_table, protect_values_table: The tables of protected
        regions which follow the context structure.
      protect_strings_table: Windows 8 and later.
    """


def _OffsetToAddress(base, offset):
    """Offsets of 0 mean the build does not copy that routine."""
    if not offset:
        return 0

    return (base + offset) & constants.ADDRESS_MASK


class PGContextDecoder(object):
    """Decodes the PatchGuard context of the session's kernel build."""

    def __init__(self, session=None):
        self.session = session

    def GetDecoder(self, build):
        """Select the decode function and layout for the build.

        Raises:
          plugin.UnsupportedTarget: for builds we do not know.
        """
        if build in (constants.OSBuild.Windows7,
                     constants.OSBuild.Windows7_SP1):
            return self.DecodeWindows7, constants.OSBuild.Windows7_SP1

        elif build == constants.OSBuild.Windows8:
            return self.DecodeWindows8, constants.OSBuild.Windows8

        elif build == constants.OSBuild.Windows10_1507:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1507

        elif build == constants.OSBuild.Windows10_1511:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1511

        elif build == constants.OSBuild.Windows10_1607:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1607

        elif build == constants.OSBuild.Windows10_1703:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1703

        elif build == constants.OSBuild.Windows10_1709:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1709

        elif build == constants.OSBuild.Windows10_1803:
            return self.DecodeWindows10, constants.OSBuild.Windows10_1803

        raise plugin.UnsupportedTarget(
            "Unsupported version (%s)." % getattr(build, "name", build))

    def GetProfile(self, layout):
        return pgcontext.PGContextProfile(layout=layout, session=self.session)

    def decode(self, context, reason=0, failure_dependent=0,
               corruption_type=0):
        """Decode the PatchGuard context at the address context.

        Raises:
          plugin.UnsupportedTarget: before any I/O if the build is unknown.
          plugin.RequiredSymbolMissing: if the anchor routines are unknown.
          plugin.DecodeError: if the context can not be read.
        """
        decode_function, layout = self.GetDecoder(
            self.session.GetParameter("os_build"))

        profile = self.GetProfile(layout)
        fsrtl_offset = self._GetFsRtlOffset()
        pg_context = self._ReadContext(profile, context)

        return decode_function(
            profile, pg_context, context, fsrtl_offset,
            bugcheck.BugcheckInfo(context, reason, failure_dependent,
                                  corruption_type))

    def _GetFsRtlOffset(self):
        """The distance between two routines copied into the context.

        The context only stores the offset of its copy of
        FsRtlUninitializeSmallMcb, and FsRtlMdlReadCompleteDevEx is copied at
        the same relative distance.
        """
        target = self.session.target
        uninitialize_small_mcb = target.get_address_by_name(
            "nt!FsRtlUninitializeSmallMcb")
        mdl_read_complete_dev_ex = target.get_address_by_name(
            "nt!FsRtlMdlReadCompleteDevEx")

        return (uninitialize_small_mcb - mdl_read_complete_dev_ex) & (
            constants.ADDRESS_MASK)

    def _ReadContext(self, profile, context):
        size = profile.get_obj_size("_PGContext")
        try:
            data = self.session.target.read(context, size)
        except addrspace.MemoryUnreadable as e:
            raise plugin.DecodeError(
                "Unable to read the PatchGuard context at %#x: %s" % (
                    context, e))

        return profile.Overlay("_PGContext", data, context)

    def _DecodeCommon(self, profile, pg_context, base, fsrtl_offset,
                      caller_info):
        info = caller_info
        available = pg_context.IsTriggered

        # A context which fired knows better than the caller.
        if available:
            info = bugcheck.DecodeBugcheck(
                pg_context.BugCheckArg0, pg_context.BugCheckArg1,
                pg_context.BugCheckArg2, pg_context.BugCheckArg3)

        uninitialize_small_mcb = _OffsetToAddress(
            base, pg_context.OffsetOfFsRtlUninitializeSmallMcb)

        mdl_read_complete_dev_ex = 0
        if uninitialize_small_mcb:
            mdl_read_complete_dev_ex = (
                uninitialize_small_mcb - fsrtl_offset) & constants.ADDRESS_MASK

        protect_codes = (base + profile.get_obj_size("_PGContext")) & (
            constants.ADDRESS_MASK)

        protect_values = (
            protect_codes + profile.get_obj_size("_PGProtectCode") *
            pg_context.NumberOfProtectCodes) & constants.ADDRESS_MASK

        return PGContextRecord(
            build=profile.layout,
            context=info.context,
            reason=info.reason,
            failure_dependent=info.failure_dependent,
            corruption_type=info.corruption_type,
            available=available,
            type_string=bugcheck.GetCorruptionTypeString(
                info.corruption_type, available),
            page_base=pg_context.PGPageBase,
            prcb=pg_context.Prcb,
            self_validation=_OffsetToAddress(
                base, pg_context.OffsetOfPGSelfValidation),
            rtl_lookup_function_entry_ex=_OffsetToAddress(
                base, pg_context.OffsetOfRtlLookupFunctionEntryEx),
            fsrtl_uninitialize_small_mcb=uninitialize_small_mcb,
            fsrtl_mdl_read_complete_dev_ex=mdl_read_complete_dev_ex,
            context_size_in_bytes=(
                pg_context.ContextSizeInQWord * 8 + pgcontext.HEADER_SIZE),
            dpc_routine=pg_context.DcpRoutineToBeScheduled,
            worker_routine=pg_context.WorkerRoutine,
            number_of_protect_codes=pg_context.NumberOfProtectCodes,
            number_of_protect_values=pg_context.NumberOfProtectValues,
            protect_codes_table=protect_codes,
            protect_values_table=protect_values,
        )

    def _ProtectStringsTable(self, profile, base):
        return (base + profile.get_obj_offset("_PGContext", "PGProtectStrings")
                + profile.get_obj_offset("_PGProtectStrings", "Strings")) & (
                    constants.ADDRESS_MASK)

    def DecodeWindows7(self, profile, pg_context, base, fsrtl_offset,
                       caller_info):
        result = self._DecodeCommon(
            profile, pg_context, base, fsrtl_offset, caller_info)
        result.protect_code2_table = _OffsetToAddress(
            base, pg_context.OffsetOfPGProtectCode2Table)

        return result

    def DecodeWindows8(self, profile, pg_context, base, fsrtl_offset,
                       caller_info):
        result = self._DecodeCommon(
            profile, pg_context, base, fsrtl_offset, caller_info)
        result.protect_strings_table = self._ProtectStringsTable(profile, base)

        return result

    def DecodeWindows10(self, profile, pg_context, base, fsrtl_offset,
                        caller_info):
        result = self._DecodeCommon(
            profile, pg_context, base, fsrtl_offset, caller_info)
        result.fsrtl_unknown0 = _OffsetToAddress(
            base, pg_context.OffsetOfFsRtlUnknown0)
        result.fsrtl_unknown1 = _OffsetToAddress(
            base, pg_context.OffsetOfFsRtlUnknown1)
        result.protect_strings_table = self._ProtectStringsTable(profile, base)

        return result


def Type106Record(failure_dependent):
    """CcBcbProfiler reports its corruption without a PatchGuard context."""
    return PGContextRecord(
        context=0, reason=0, failure_dependent=failure_dependent,
        corruption_type=bugcheck.CCBCB_PROFILER_TYPE, available=1,
        type_string=bugcheck.GetCorruptionTypeString(
            bugcheck.CCBCB_PROFILER_TYPE))


def DumpPatchGuard(session, context, reason=0, failure_dependent=0,
                   corruption_type=0):
    """Decode the context, or describe a context-less 0x106 corruption."""
    if corruption_type == bugcheck.CCBCB_PROFILER_TYPE:
        common.CheckTarget(session)
        return Type106Record(failure_dependent)

    return PGContextDecoder(session=session).decode(
        context, reason, failure_dependent, corruption_type)


# Label, record member and format of every line of the report.
REPORT_FIELDS = [
    ("Failure type dependent information", "failure_dependent", "addr"),
    ("Allocated memory base", "page_base", "addr"),
    ("Prcb", "prcb", "addr"),
    ("PGSelfValidation", "self_validation", "addr"),
    ("RtlLookupFunctionEntryEx", "rtl_lookup_function_entry_ex", "addr"),
    ("FsRtlUninitializeSmallMcb", "fsrtl_uninitialize_small_mcb", "addr"),
    ("FsRtlMdlReadCompleteDevEx", "fsrtl_mdl_read_complete_dev_ex", "addr"),
    ("PGProtectCode2[?]", "protect_code2_table", "addr"),
    ("FsRtlUnknown0", "fsrtl_unknown0", "addr"),
    ("FsRtlUnknown1", "fsrtl_unknown1", "addr"),
    ("ContextSizeInBytes", "context_size_in_bytes", "size"),
    ("DPC Routine", "dpc_routine", "addr"),
    ("WorkerRoutine", "worker_routine", "addr"),
    ("Number Of Protected Codes", "number_of_protect_codes", "count"),
    ("Number Of Protected Values", "number_of_protect_values", "count"),
    ("Protected Codes  Table", "protect_codes_table", "addr"),
    ("Protected Values Table", "protect_values_table", "addr"),
    ("Protected Strings Table", "protect_strings_table", "addr"),
]

LABEL_WIDTH = 40


def RenderRecord(renderer, record):
    renderer.format("\n")
    renderer.format(
        "    {0:<24}: {1:addrpad}, An address of PatchGuard context\n",
        "PatchGuard Context", record.context)
    renderer.format(
        "    {0:<24}: {1:addrpad}, An address of validation data that "
        "caused the error\n", "Validation Data", record.reason)
    renderer.format(
        "    {0:<24}: Available {1:d}   : {2:x} : {3}\n",
        "Type of Corruption", record.available, record.corruption_type,
        record.type_string)

    for label, member, style in REPORT_FIELDS:
        value = record.get(member)
        if value is None:
            continue

        label = "    %-*s: " % (LABEL_WIDTH, label)
        if style == "addr":
            renderer.format(label + "{0:addrpad}\n", value)
        elif style == "size":
            renderer.format(label + "{0:08x} (Can be broken)\n", value)
        else:
            renderer.format(label + "{0:08x}\n", value)

    renderer.format("\n")


def RenderHint(renderer, context):
    if not context:
        renderer.format("\n")
        return

    renderer.format("Use:\n")
    renderer.format(
        "    dps {0:016x}+{1:x} to display the structure of PatchGuard\n",
        context, pgcontext.HEADER_SIZE)
    renderer.format("\n")


class DumpPG(common.AbstractWindowsCommandPlugin):
    """Displays the PatchGuard context."""

    __name = "dumppg"

    __args = [
        dict(name="address", type="Address", positional=True, required=True,
             help="An address of a PatchGuard context."),
    ]

    def render(self, renderer):
        self.check_target()
        address = self.plugin_args.address
        record = DumpPatchGuard(self.session, address)

        RenderRecord(renderer, record)
        RenderHint(renderer, address)


class AnalyzePG(common.AbstractWindowsCommandPlugin):
    """Displays the PatchGuard context related to bugcheck 0x109."""

    __name = "analyzepg"

    def read_bugcheck(self):
        try:
            code, args = self.target.read_bugcheck_data()
        except addrspace.MemoryUnreadable:
            code, args = None, None

        if code != constants.CRITICAL_STRUCTURE_CORRUPTION:
            raise plugin.PluginError(
                "No CRITICAL_STRUCTURE_CORRUPTION bugcheck information was "
                "derived.")

        return bugcheck.DecodeBugcheck(*args)

    def render(self, renderer):
        self.check_target()
        info = self.read_bugcheck()

        renderer.format("\n" + bugcheck.BANNER)
        record = DumpPatchGuard(self.session, *info)

        RenderRecord(renderer, record)
        RenderHint(renderer, record.context)
