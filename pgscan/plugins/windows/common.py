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

"""Classes and session hooks shared by the Windows kernel plugins."""
import collections

from pgscan import config
from pgscan import constants
from pgscan import kb
from pgscan import plugin
from pgscan import utils
from pgscan.plugins.overlays.windows import pool


config.DeclareOption(
    "--examination_bytes", type="IntParser",
    default=constants.EXAMINATION_BYTES,
    help="The number of bytes sampled from each candidate.")

config.DeclareOption(
    "--maximum_distinctive_number", type="IntParser",
    default=constants.MAXIMUM_DISTINCTIVE_NUMBER,
    help="Candidates with more 0x00 or 0xFF bytes than this are rejected.")

config.DeclareOption(
    "--minimum_randomness", type="IntParser",
    default=constants.MINIMUM_RANDOMNESS,
    help="Candidates with fewer distinct byte values than this are rejected.")

config.DeclareOption(
    "--minimum_region_size", type="IntParser",
    default=constants.MINIMUM_REGION_SIZE,
    help="The smallest allocation which can hold a PatchGuard context.")

config.DeclareOption(
    "--maximum_region_size", type="IntParser",
    default=constants.MAXIMUM_REGION_SIZE,
    help="The largest allocation which can hold a PatchGuard context.")


# The outcome of a scan. When the scan was cancelled, hits holds the
# candidates found before the cancellation.
ScanResult = collections.namedtuple("ScanResult", "hits cancelled")


# Builds whose PatchGuard context layout we know.
SUPPORTED_BUILDS = frozenset([
    constants.OSBuild.Windows7,
    constants.OSBuild.Windows7_SP1,
    constants.OSBuild.Windows8,
    constants.OSBuild.Windows10_1507,
    constants.OSBuild.Windows10_1511,
    constants.OSBuild.Windows10_1607,
    constants.OSBuild.Windows10_1703,
    constants.OSBuild.Windows10_1709,
    constants.OSBuild.Windows10_1803,
])


def GetScanThresholds(session):
    """The tunable limits used by both scanners."""
    return utils.AttributeDict(
        examination_bytes=session.GetParameter(
            "examination_bytes", constants.EXAMINATION_BYTES),
        maximum_distinctive_number=session.GetParameter(
            "maximum_distinctive_number",
            constants.MAXIMUM_DISTINCTIVE_NUMBER),
        minimum_randomness=session.GetParameter(
            "minimum_randomness", constants.MINIMUM_RANDOMNESS),
        minimum_region_size=session.GetParameter(
            "minimum_region_size", constants.MINIMUM_REGION_SIZE),
        maximum_region_size=session.GetParameter(
            "maximum_region_size", constants.MAXIMUM_REGION_SIZE),
    )


def CheckTarget(session):
    """Reject targets we can not analyse.

    This only asks the target about its architecture and version banner, so
    it never reads kernel memory or resolves a symbol.

    Raises:
      plugin.UnsupportedTarget
    """
    if session.target is None:
        raise plugin.PluginError(
            "No target is loaded. Specify a crash dump with --filename.")

    if session.target.is_32bit():
        raise plugin.UnsupportedTarget("x86 is not supported.")

    build = session.GetParameter("os_build")
    if build not in SUPPORTED_BUILDS:
        raise plugin.UnsupportedTarget(
            "Unsupported version (%s)." % getattr(build, "name", build))

    return build


class AbstractWindowsParameterHook(kb.ParameterHook):
    __abstract = True

    # Values derived from the target live as long as the target does.
    volatile = True


class OSBuildHook(AbstractWindowsParameterHook):
    """Classify the kernel build from the target's version banner.

    The first classification wins for the life of the session, even when the
    build is not recognised.
    """

    name = "os_build"

    def calculate(self):
        banner = self.session.target.get_build_banner()
        build = constants.ClassifyBuild(banner)
        if build is constants.OSBuild.Unknown:
            self.session.logging.warning(
                "Unable to classify the kernel build from banner %r.", banner)
        else:
            self.session.logging.debug("Kernel build is %s.", build.name)

        return build


class PfnDatabaseHook(AbstractWindowsParameterHook):
    """The PFN database is pointed to by nt!MmPfnDatabase."""

    name = "pfn_database"

    def calculate(self):
        target = self.session.target
        return target.read_pointer(
            target.get_address_by_name("nt!MmPfnDatabase"))


class AbstractWindowsCommandPlugin(plugin.TypedPlugin):
    """A base class for all plugins which analyse a Windows x64 kernel.

    The target is checked before the plugin does any work.
    """

    __abstract = True

    table_header = []

    @utils.safe_property
    def target(self):
        return self.session.target

    @utils.safe_property
    def os_build(self):
        return self.session.GetParameter("os_build")

    def check_target(self):
        return CheckTarget(self.session)

    def render(self, renderer, **options):
        self.check_target()
        return super(AbstractWindowsCommandPlugin, self).render(
            renderer, **options)


class PoolProfileHook(AbstractWindowsParameterHook):
    """Page table and pool structures matching the kernel build."""

    name = "pool_profile"

    def calculate(self):
        return pool.PoolProfile(
            build=self.session.GetParameter("os_build"),
            session=self.session)
