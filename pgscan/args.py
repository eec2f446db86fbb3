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

"""This module manages the command line parsing logic.

The command line reads:

  pgscan [global options] plugin [plugin options]

Global options are declared with config.DeclareOption() and plugin options by
each plugin's args() class method. Both are translated into argparse
arguments here.
"""
import argparse
import re
import sys

from pgscan import config
from pgscan import constants
from pgscan import plugin
from pgscan import utils


config.DeclareOption(
    "-h", "--help", default=False, type="Boolean",
    help="Show help about global parameters.")

config.DeclareOption(
    "-v", "--verbose", default=False, type="Boolean",
    help="Set logging to debug level.")

config.DeclareOption(
    "-q", "--quiet", default=False, type="Boolean",
    help="Turn off logging to stderr.")

config.DeclareOption(
    "--version", default=False, type="Boolean",
    help="Prints the pgscan version and exits.")


class PGScanHelpFormatter(argparse.RawDescriptionHelpFormatter):
    def add_argument(self, action):
        # Allow us to suppress an arg from the --help output for those options
        # which do not make sense on the command line.
        if action.dest != "SUPPRESS":
            super(PGScanHelpFormatter, self).add_argument(action)


class PGScanArgParser(argparse.ArgumentParser):
    ignore_errors = False

    def __init__(self, session=None, **kwargs):
        kwargs["formatter_class"] = PGScanHelpFormatter
        if session is None:
            raise RuntimeError("Session must be set")

        self.session = session
        super(PGScanArgParser, self).__init__(**kwargs)

    def error(self, message):
        if self.ignore_errors:
            return

        super(PGScanArgParser, self).error(message)

    def parse_known_args(self, args=None, namespace=None, force=False, **_):
        self.ignore_errors = force

        return super(PGScanArgParser, self).parse_known_args(
            args=args, namespace=namespace)

    def print_help(self, file=None):
        if self.ignore_errors:
            return

        return super(PGScanArgParser, self).print_help(file=file)

    def exit(self, *args, **kwargs):
        if self.ignore_errors:
            return

        return super(PGScanArgParser, self).exit(*args, **kwargs)


def ParseGlobalArgs(parser, argv, user_session):
    """Parse some session wide args which must be done before anything else."""
    # Register global args.
    ConfigureCommandLineParser(config.OPTIONS, parser)

    # Parse the known args.
    known_args, unknown_args = parser.parse_known_args(args=argv, force=True)

    with user_session.state as state:
        for arg, value in vars(known_args).items():
            # Defaults come from config.MergeConfigOptions(), never from
            # argparse, so the config file is not overridden by them.
            if value is not None:
                state.Set(arg, value)

        # Enforce the appropriate logging level if user supplies the --verbose
        # or --quiet command line flags.
        verbose_flag = getattr(known_args, "verbose", None)
        quiet_flag = getattr(known_args, "quiet", None)

        if verbose_flag and quiet_flag:
            raise plugin.InvalidArgs("Cannot set both --verbose and --quiet!")

        if verbose_flag:
            state.Set("logging_level", "DEBUG")
        elif quiet_flag:
            state.Set("logging_level", "CRITICAL")

    return known_args, unknown_args


def FindPlugin(argv=None):
    """Search the argv for the first occurrence of a valid plugin name.

    Returns the plugin name and the argv with the plugin name removed, or None
    if no plugin is named.
    """
    names = set(cls.name for cls in plugin.Command.classes.values()
                if cls.name)

    result = argv[:]
    for i, item in enumerate(argv):
        if item in names:
            result.pop(i)
            return item, result

    return None, result


def ConfigureCommandLineParser(command_metadata, parser):
    """Apply the plugin configuration to an argparse parser.

    This is the glue between the abstract plugin metadata and argparse.
    """
    try:
        groups = parser.groups
    except AttributeError:
        groups = parser.groups = {
            "None": parser.add_argument_group("Global options")
        }

    if command_metadata.plugin_cls:
        groups[command_metadata.plugin_cls.name] = parser.add_argument_group(
            "Plugin %s options" % command_metadata.plugin_cls.name)

    for name, options in command_metadata.args.items():
        # Prevent None getting into the kwargs because it upsets argparser.
        kwargs = dict((k, v) for k, v in options.items() if v is not None)
        name = kwargs.pop("name", None) or name

        # Defaults are not passed on to argparse, and instead applied
        # separately through ApplyDefaults.
        default = kwargs.pop("default", None)
        required = kwargs.pop("required", False)
        kwargs.pop("hidden", None)

        group_name = None
        if command_metadata.plugin_cls:
            group_name = command_metadata.plugin_cls.name

        group = groups.get(group_name)
        if group is None:
            groups[group_name] = group = parser.add_argument_group(group_name)

        positional_args = []
        short_opt = kwargs.pop("short_opt", None)

        # A positional arg is allowed to be specified without a flag.
        if kwargs.pop("positional", None):
            positional_args.append(name)

            # If a position arg is optional we need to specify nargs=?
            if not required:
                kwargs["nargs"] = "?"

        # Otherwise argparse wants to have - in front of the arg.
        else:
            if short_opt:
                positional_args.append("-" + short_opt)

            positional_args.append("--" + name)

        arg_type = kwargs.pop("type", None)
        if arg_type == "IntParser":
            kwargs["action"] = IntParser

        elif arg_type in ("Boolean", "Bool"):
            # Argparse will assume default False for flags and not return
            # None, which is required by ApplyDefaults to recognize an unset
            # argument. To solve this issue, we just pass the default on.
            kwargs["default"] = default
            kwargs["action"] = "store_true"

        # Multiple entries of choices (requires a choices paramter).
        elif arg_type == "ChoiceArray":
            kwargs["nargs"] = "+" if required else "*"
            kwargs["choices"] = list(kwargs["choices"])

        elif arg_type == "Choices":
            kwargs["choices"] = list(kwargs["choices"])

        group.add_argument(*positional_args, **kwargs)


def parse_args(argv=None, user_session=None, global_arg_cb=None):
    """Parse the args from the command line argv.

    Args:
      argv: The args to process.
      user_session: The session we work with.
      global_arg_cb: A callback that will be used to process global
         args. Global args are those which affect the state of pgscan and
         must be processed prior to any plugin specific args.

    Returns:
      A (plugin class, plugin args) tuple.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = PGScanArgParser(
        description=constants.BANNER,
        conflict_handler='resolve',
        add_help=False,
        session=user_session,
        epilog="Available plugins: %s" % ", ".join(sorted(
            cls.name for cls in plugin.Command.classes.values()
            if cls.name)))

    # The plugin name is removed so greedy global options can not swallow it.
    plugin_name, argv = FindPlugin(argv)

    # Parse the global args from the command line.
    global_flags, unknown_flags = ParseGlobalArgs(parser, argv, user_session)
    if global_arg_cb:
        global_arg_cb(global_flags, unknown_flags)

    if plugin_name is None:
        parser.print_help()
        sys.exit(-1)

    plugin_cls = user_session.plugins.GetPluginClass(plugin_name)
    if plugin_cls is None:
        raise plugin.PluginError(
            "Plugin %s is not available for this configuration" % plugin_name)

    # Configure the arg parser for this command's options.
    command_metadata = config.CommandMetadata(plugin_cls)
    ConfigureCommandLineParser(command_metadata, parser)

    # We handle help especially.
    if global_flags.help:
        parser.print_help()
        sys.exit(-1)

    # Parse the final command line.
    result = parser.parse_args(argv)

    # Apply the defaults to the parsed args.
    result = utils.AttributeDict(vars(result))
    command_metadata.ApplyDefaults(result)

    return plugin_cls, result


## Parser for special args.

class IntParser(argparse.Action):
    """Class to parse ints either in hex or as ints."""

    def parse_int(self, value):
        # Support suffixes
        multiplier = 1
        m = re.search("(.*)(Mb|mb|kb|m|M|k|g|G|Gb)$", value)
        if m:
            value = m.group(1)
            suffix = m.group(2).lower()
            if suffix in ("gb", "g"):
                multiplier = 1024 * 1024 * 1024
            elif suffix in ("mb", "m"):
                multiplier = 1024 * 1024
            elif suffix in ("kb", "k"):
                multiplier = 1024

        try:
            value = int(value, 0) * multiplier
        except ValueError:
            raise argparse.ArgumentError(self, "Invalid integer value")

        return value

    def __call__(self, parser, namespace, values, option_string=None):
        if isinstance(values, str):
            values = self.parse_int(values)
        setattr(namespace, self.dest, values)
