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

"""The pgscan command line entry point."""
import logging
import signal
import sys

from pgscan import addrspace
from pgscan import args
from pgscan import config
from pgscan import constants
from pgscan import plugin
from pgscan import session

# Load all the plugins.
from pgscan import plugins  # pylint: disable=unused-import
from pgscan.ui import text  # pylint: disable=unused-import


def InstallCancellationHandler(user_session):
    """Make Ctrl+C request a cooperative stop of the running scan.

    A second Ctrl+C interrupts immediately.
    """
    def Handler(_signum, _frame):
        if user_session.cancellation.cancelled:
            raise KeyboardInterrupt()

        user_session.logging.warning(
            "Cancelling analysis. Press Ctrl+C again to abort.")
        user_session.cancellation.Cancel()

    return signal.signal(signal.SIGINT, Handler)


def main(argv=None):
    user_session = session.Session()

    # Apply the configuration file and the option defaults.
    with user_session.state as state:
        config.MergeConfigOptions(state, user_session)

    def global_arg_cb(global_flags, _):
        if global_flags.version:
            print("This is pgscan Version %s (%s)" % (
                constants.VERSION, constants.CODENAME))
            sys.exit(0)

    try:
        plugin_cls, flags = args.parse_args(
            argv=argv, global_arg_cb=global_arg_cb,
            user_session=user_session)
    except plugin.Error as e:
        logging.error("%s", e)
        return 1

    InstallCancellationHandler(user_session)

    try:
        # Run the plugin with plugin specific args.
        user_session.RunPlugin(plugin_cls, **config.RemoveGlobalOptions(flags))
    except (plugin.Error, addrspace.Error) as e:
        user_session.logging.error("%s", e)
        return 1
    except KeyboardInterrupt:
        user_session.logging.error("Aborted.")
        return 1
    finally:
        user_session.Reset()

    return 0


if __name__ == '__main__':
    sys.exit(main())
