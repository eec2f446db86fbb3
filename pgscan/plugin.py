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

"""Plugins allow the core pgscan system to be extended."""
import copy

from pgscan import registry
from pgscan import utils


class Error(Exception):
    """Raised for plugin errors."""


class PluginError(Error):
    """An error occured in a plugin."""


class InvalidArgs(Error):
    """Invalid arguments."""


class UnsupportedTarget(PluginError):
    """The target is 32 bit or runs an OS build we can not decode."""


class RequiredSymbolMissing(PluginError):
    """A symbol the operation can not work without could not be resolved."""

    def __init__(self, symbol, message=None):
        self.symbol = symbol
        super(RequiredSymbolMissing, self).__init__(
            message or "%s could not be found." % symbol)


class PatternNotFound(PluginError):
    """A byte pattern was not found in the searched range."""


class DecodeError(PluginError):
    """A buffer could not be interpreted as the requested structure."""


class CommandOption(object):
    """An option specification."""

    def __init__(self, name=None, default=None, type="String", choices=None,
                 help="", positional=False, required=False, hidden=False):
        self.name = name
        self.default = default
        self.type = type
        self.help = help
        self.choices = choices
        self.required = required
        self.positional = positional
        self.hidden = hidden

    def add_argument(self, parser):
        """Add ourselves to the parser."""
        prefix = "" if self.positional else "--"
        parser.add_argument(prefix + self.name, default=self.default,
                            type=self.type, help=self.help,
                            positional=self.positional, hidden=self.hidden,
                            required=self.required, choices=self.choices)

    def parse(self, value, session):
        """Parse the value as passed."""
        if value is None:
            if self.default is None and self.type in ["Bool", "Boolean"]:
                return False

            return self.default

        # Addresses may be given as numbers or as symbol names.
        if self.type == "Address":
            if isinstance(value, str):
                try:
                    value = int(value, 0)
                except ValueError:
                    value = session.target.get_address_by_name(value)
            else:
                value = int(value)

        elif self.type == "IntParser":
            if isinstance(value, str):
                value = int(value, 0)
            else:
                value = int(value)

        elif self.type == "Choices":
            if value not in self.choices:
                raise InvalidArgs("Arg %s must be one of %s" % (
                    self.name, self.choices))

        elif self.type in ["Bool", "Boolean"]:
            value = bool(value)

        return value


class Command(object, metaclass=registry.MetaclassRegistry):
    """A command can be run from the pgscan command line.

    In order to define a new command simply extend this class.
    """

    # these attribute are not inherited.

    # The name of this command (The command will be registered under this
    # name).
    __name = ""

    # This class will not be registered (but extensions will).
    __abstract = True

    @classmethod
    def args(cls, parser):
        """Declare the command line args this plugin needs."""

    @registry.classproperty
    def name(cls):  # pylint: disable=no-self-argument
        return getattr(cls, "_%s__name" % cls.__name__, None)

    @classmethod
    def is_active(cls, session):
        _ = session
        return True

    def __init__(self, ignore_required=False, **kwargs):
        """The constructor for this command.

        Commands can take arbitrary named args and have access to the running
        session.

        Args:
          session: The session we will use. Many options are taken from the
            session by default, if not provided. This allows users to omit
            specifying many options.

          ignore_required: If this is true plugin constructors must allow the
            plugin to be instantiated with no parameters. All parameter
            validation shall be disabled and construction must succeed.
        """
        session = kwargs.pop("session", None)
        if kwargs:
            raise InvalidArgs("Invalid arguments: %s" % list(kwargs))

        super(Command, self).__init__()

        if session is None:
            raise InvalidArgs("A session must be provided.")

        self.session = session
        self.ignore_required = ignore_required

    def __repr__(self):
        return "Plugin: %s (%s)" % (self.name, self.__class__.__name__)

    def render(self, renderer):
        """Produce results on the renderer given.

        Each plugin should implement this method to produce output on the
        renderer. The framework will initialize the plugin and provide it with
        some kind of renderer to write output on. The plugin should not assume
        that the renderer is actually TextRenderer, only that the methods
        defined in the BaseRenderer exist.

        Args:
          renderer: A renderer based at pgscan.ui.renderer.BaseRenderer.
        """

    @classmethod
    def GetActiveClasses(cls, session):
        """Return only the active commands based on config."""
        for command_cls in cls.classes.values():
            if command_cls.is_active(session):
                yield command_cls


class PluginHeader(object):
    """The declared columns of a TypedPlugin table."""

    header = None

    def __init__(self, *columns):
        for column in columns:
            if not isinstance(column, dict):
                raise TypeError(
                    "Table columns must be declared as dicts: %r" % (columns,))

            if not column.get("name"):
                raise ValueError(
                    "Every table column needs a name: %r" % (columns,))

        self.header = copy.deepcopy(columns)

    def __iter__(self):
        return iter(self.header)

    def __getitem__(self, idx):
        return self.header[idx]


class ArgsParserMixin(object):
    """A Mixin which provides argument parsing and validation."""
    # Each plugin mixin should define a list of CommandOption instances with
    # this name (__args). The constructor will collect these definitions into a
    # self.args parameter available for the plugins at runtime.
    __args = []

    # This will contain the parsed constructor args after the plugin is
    # instantiated.
    plugin_args = None

    def __init__(self, *pos_args, **kwargs):
        self.ignore_required = kwargs.get("ignore_required", False)

        if self.plugin_args is None:
            self.plugin_args = utils.AttributeDict()

        # Collect args in the declared order (basically follow the mro
        # backwards).
        definitions = []
        definitions_classes = {}
        for cls in self.__class__.__mro__:
            args_definition = getattr(cls, "_%s__args" % cls.__name__, [])
            for definition in args_definition:
                # Definitions can be just simple dicts.
                if isinstance(definition, dict):
                    definition = CommandOption(**definition)

                # Since we traverse the definition in reverse MRO order,
                # later definitions should be masked by earlier (more
                # derived) definitions.
                if definition.name in definitions_classes:
                    continue

                definitions_classes[definition.name] = cls
                definitions.append(definition)

        # Handle positional args by consuming them off the pos_args array in
        # definition order. This allows positional args to be specified either
        # by position, or by keyword.
        positional_args = [x for x in definitions if x.positional]
        if len(positional_args) < len(pos_args):
            raise TypeError("Too many positional args provided.")

        for pos_arg, definition in zip(pos_args, positional_args):
            if definition.name in kwargs:
                raise TypeError(
                    "Positional Args %s is also supplied as a keyword arg." %
                    definition.name)

            kwargs[definition.name] = pos_arg

        # Collect all the declared args and parse them.
        for definition in definitions:
            value = kwargs.pop(definition.name, None)
            if (value is None and definition.required and
                    not self.ignore_required):
                raise InvalidArgs("%s is required." % definition.name)

            self.plugin_args[definition.name] = definition.parse(
                value, session=kwargs.get("session"))

        super(ArgsParserMixin, self).__init__(**kwargs)

    @classmethod
    def args(cls, parser):
        super(ArgsParserMixin, cls).args(parser)

        # Collect all the declared args and add them to the parser.
        for cls_i in cls.__mro__:
            args_definition = getattr(cls_i, "_%s__args" % cls_i.__name__, [])
            for definition in args_definition:
                if isinstance(definition, dict):
                    definition = CommandOption(**definition)

                # Allow derived classes to override args from base classes.
                if definition.name in parser.args:
                    continue

                definition.add_argument(parser)


class TypedPlugin(ArgsParserMixin, Command):
    """A plugin that produces standardized table output from collect()."""

    __abstract = True

    # Subclasses must override. Has to be a list of column specifications
    # (i.e. list of dicts specifying the columns).
    table_header = None
    table_options = {}

    def __init__(self, *pos_args, **kwargs):
        super(TypedPlugin, self).__init__(*pos_args, **kwargs)
        if isinstance(self.table_header, (list, tuple)):
            self.table_header = PluginHeader(*self.table_header)

    def collect(self):
        """Collect data that will be passed to renderer.table_row."""
        raise NotImplementedError()

    def render(self, renderer, **options):
        table_options = self.table_options.copy()
        table_options.update(options)

        renderer.table_header(self.table_header, **table_options)
        for row in self.collect():
            if isinstance(row, (list, tuple)):
                renderer.table_row(*row)
            else:
                new_row = []
                for column in self.table_header:
                    new_row.append(row.pop(column["name"], None))

                if row:
                    raise RuntimeError(
                        "Plugin produced more data than defined columns (%s)." %
                        (list(row),))

                renderer.table_row(*new_row)
