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

"""This is the pgscan configuration system.

pgscan reads an optional YAML file with global settings. This makes it easy
for users to retain commonly used parameters (e.g. the symbol file or the
location of pooltag.txt) between runs.

Note that the configuration file is only used from the command line. When
used as a library the configuration file has no effect.
"""
import collections
import logging
import os
import sys
import tempfile

import yaml


class CommandMetadata(object):
    """The command line arguments of one plugin (or the global options).

    Plugins fill this in from their args() class method.
    """

    def __init__(self, plugin_cls=None):
        self.args = collections.OrderedDict()
        self.plugin_cls = plugin_cls
        if plugin_cls:
            plugin_cls.args(self)

        self.description = ""
        if plugin_cls is not None:
            self.description = (plugin_cls.__doc__ or
                                plugin_cls.__init__.__doc__ or "")

    def add_argument(self, short_opt, long_opt=None, **options):
        """Declare an argument.

        Takes the same options as argparse add_argument() but the type is one
        of the names understood by args.ConfigureCommandLineParser:

        - IntParser: an integer, hex or with a k/m/g suffix.
        - Address: an integer or a kernel symbol name.
        - Boolean: a flag.
        - Choices / ChoiceArray: one or several of the choices parameter.
        - String: anything else.
        """
        if "action" in options:
            raise RuntimeError("Action keyword is deprecated.")

        if not isinstance(options.get("type", ""), str):
            raise RuntimeError("Type must be a string.")

        # Is this a positional arg?
        positional = options.pop("positional", False)

        # For now we support option names with leading --.
        if long_opt is None:
            long_opt = short_opt
            short_opt = ""

        if long_opt.startswith("-"):
            long_opt = long_opt.lstrip("-")
            short_opt = short_opt.lstrip("-")
            positional = False

        name = long_opt
        options["short_opt"] = short_opt
        options["positional"] = positional
        options["name"] = name

        self.args[name] = options

    def ApplyDefaults(self, args):
        """Fill in the declared default for every arg which is None."""
        for name, options in self.args.items():
            name = name.replace("-", "_")
            if args.get(name) is None:
                args[name] = options.get("default")

        return args


def GetHomeDir(session):
    return (
        session.GetParameter("home", cached=False) or
        os.environ.get("HOME") or      # Unix
        os.environ.get("USERPROFILE") or # Windows
        tempfile.gettempdir() or  # Fallback tmp dir.
        ".")


# Options which apply to every plugin.
OPTIONS = CommandMetadata()


def GetConfigFile(session):
    """Load the first readable .pgscanrc mapping.

    Returns:
      A dict of option values, empty when no configuration file exists.
    """
    search_path = [
        # Next to the main binary (in case of a frozen pgscan.exe).
        os.path.join(os.path.dirname(sys.executable), ".pgscanrc"),
        ".pgscanrc",   # Current directory.
        os.path.join(GetHomeDir(session), ".pgscanrc"), # Home directory.
        "/etc/pgscanrc",
    ]

    for path in search_path:
        try:
            with open(path, "rb") as fd:
                result = yaml.safe_load(fd)
        except (IOError, ValueError):
            continue

        except yaml.YAMLError as e:
            logging.warning("Unable to parse configuration %s: %s", path, e)
            continue

        if not isinstance(result, dict):
            continue

        logging.debug("Loaded configuration from %s", path)
        return result

    return {}


def MergeConfigOptions(state, session):
    """Set every global option from the config file or its default."""
    config_data = GetConfigFile(session)

    # First apply the defaults:
    for name, options in OPTIONS.args.items():
        if name not in config_data:
            config_data[name] = options.get("default")

    for k, v in config_data.items():
        state.Set(k, v)


def RemoveGlobalOptions(state):
    """Drop the global options from parsed plugin flags."""
    state.pop("SUPPRESS", None)

    for name in OPTIONS.args:
        state.pop(name, None)

    return state


def DeclareOption(*args, **kwargs):
    """Declare a global option (settable on the command line or in .pgscanrc)."""
    # Options can not be positional!
    kwargs["positional"] = False
    OPTIONS.add_argument(*args, **kwargs)
