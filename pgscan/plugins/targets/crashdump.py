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

"""A kernel target backed by a Windows x64 crash dump and a symbol file.

Crash dumps carry no symbol information so the addresses of the few kernel
symbols we need are supplied in a YAML file:

  kernel_base: 0xfffff80002a1e000
  symbols:
    nt!MmGetVirtualForPhysical: 0x1c2be0
    nt!MmSystemRangeStart: 0x2f8a58
    nt!PoolBigPageTable: 0x2f1c08
    nt!PoolBigPageTableSize: 0x2f1c00

Symbol values are offsets from the kernel base, unless the file sets
"absolute: true". The kernel base may also be given on the command line.
"""
import struct

import yaml

from pgscan import addrspace
from pgscan import config
from pgscan import constants
from pgscan import kb
from pgscan import plugin
from pgscan import target
from pgscan.plugins.addrspaces import amd64
from pgscan.plugins.addrspaces import crash
from pgscan.plugins.addrspaces import standard
from pgscan.plugins.overlays.windows import crashdump


config.DeclareOption(
    "-f", "--filename", type="String",
    help="The crash dump file to analyse.")

config.DeclareOption(
    "--symbols", type="String",
    help="A YAML file with the addresses of the required kernel symbols.")

config.DeclareOption(
    "--kernel_base", type="IntParser",
    help="The address the kernel is loaded at. Overrides the symbol file.")


# The signature of a 32 bit crash dump.
PAGEDUMP32_SIGNATURE = b"PAGEDUMP"


def LoadSymbolFile(filename, kernel_base=None):
    """Load a YAML symbol file into a dict of name -> absolute address."""
    try:
        with open(filename, "rb") as fd:
            data = yaml.safe_load(fd)
    except IOError as e:
        raise plugin.PluginError(
            "Unable to open symbol file %s: %s" % (filename, e))

    except yaml.YAMLError as e:
        raise plugin.PluginError(
            "Unable to parse symbol file %s: %s" % (filename, e))

    if not isinstance(data, dict):
        raise plugin.PluginError(
            "Symbol file %s does not contain a mapping." % filename)

    if kernel_base is None:
        kernel_base = data.get("kernel_base", 0)

    base = 0 if data.get("absolute") else int(kernel_base)
    result = {}
    for name, value in (data.get("symbols") or {}).items():
        result[NormalizeSymbolName(name)] = (
            base + int(value)) & constants.ADDRESS_MASK

    return result


def NormalizeSymbolName(name):
    """Symbols are always qualified with their module name."""
    if "!" not in name:
        name = "nt!" + name

    module, symbol = name.split("!", 1)
    return "%s!%s" % (module.lower(), symbol)


class CrashDumpTarget(target.KernelTarget):
    """Reads kernel virtual memory from a crash dump file."""

    name = "crashdump"

    def __init__(self, filename=None, symbols=None, kernel_base=None,
                 **kwargs):
        super(CrashDumpTarget, self).__init__(**kwargs)
        self.filename = filename
        self.kernel_as = None
        self.header = None

        self.physical_as = standard.FileAddressSpace(
            filename=filename, session=self.session)

        # We only need to know that a 32 bit dump is 32 bit.
        self._is_32bit = (
            self.physical_as.read(0, 8) == PAGEDUMP32_SIGNATURE)

        self.symbols = {}
        if symbols:
            self.symbols = LoadSymbolFile(symbols, kernel_base=kernel_base)

        if not self._is_32bit:
            self._open_kernel_as()

    def _open_kernel_as(self):
        profile = crashdump.CrashDump64Profile(session=self.session)
        self.header = profile.Object("_DMP_HEADER64", vm=self.physical_as)

        dump_type = self.header.DumpType
        if dump_type == crashdump.FULL_DUMP:
            dump_as = crash.WindowsCrashDumpSpace64(
                base=self.physical_as, session=self.session)

        elif dump_type == crashdump.BMP_DUMP:
            dump_as = crash.WindowsCrashBMP(
                base=self.physical_as, session=self.session)

        else:
            raise plugin.UnsupportedTarget(
                "Crash dump type %s (%s) is not supported." % (
                    dump_type, crashdump.DUMP_TYPES.get(dump_type, "Unknown")))

        self.session.logging.debug(
            "Opened %s crash dump %s with DTB %#x",
            crashdump.DUMP_TYPES[dump_type], self.filename, dump_as.dtb)

        self.kernel_as = amd64.AMD64PagedMemory(
            base=dump_as, dtb=dump_as.dtb, session=self.session)

    def read(self, address, length):
        if self.kernel_as is None:
            raise addrspace.MemoryUnreadable(address)

        return self.kernel_as.read(address, length)

    def get_address_by_name(self, name):
        try:
            return self.symbols[NormalizeSymbolName(name)]
        except KeyError:
            raise plugin.RequiredSymbolMissing(name)

    def get_build_banner(self):
        if self.header is None:
            return None

        # The minor version of a crash dump is the kernel build number.
        return constants.BANNER_PREFIX % self.header.MinorVersion

    def read_bugcheck_data(self):
        if self.header is None:
            return super(CrashDumpTarget, self).read_bugcheck_data()

        parameters = self.header.m("BugCheckCodeParameter")
        data = self.physical_as.read(
            parameters.obj_offset, parameters.obj_size)

        return self.header.BugCheckCode, list(struct.unpack("<4Q", data))

    def is_32bit(self):
        return self._is_32bit

    def close(self):
        self.physical_as.close()

    def __str__(self):
        return "<%s %s>" % (self.__class__.__name__, self.filename)


class TargetHook(kb.ParameterHook):
    """Open the crash dump named by the filename parameter."""

    name = "target"

    def calculate(self):
        filename = self.session.GetParameter("filename")
        if not filename:
            return None

        return CrashDumpTarget(
            filename=filename,
            symbols=self.session.GetParameter("symbols"),
            kernel_base=self.session.GetParameter("kernel_base"),
            session=self.session)
