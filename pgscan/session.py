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

"""This module implements the pgscan session.

The session stores everything that is known about the kernel target being
analysed. It holds the user supplied configuration, a cache of values derived
from the target (the OS build, the page table self-map base and the PFN
database base) and dispatches progress and log messages to the renderer.
"""
import functools
import logging
import weakref

from pgscan import config
from pgscan import constants
from pgscan import kb
from pgscan import plugin
from pgscan import utils

from pgscan.ui import renderer


config.DeclareOption(
    "--logging_level", default="WARNING", type="Choices",
    choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    help="The logging threshold.")

config.DeclareOption(
    "--logging_format",
    default="%(asctime)s:%(levelname)s:%(name)s:%(message)s",
    help="The format string to pass to the logging module.")

config.DeclareOption(
    "--output", default=None,
    help="If specified we write output to this file.")

config.DeclareOption(
    "--home", default=None,
    help="An alternative home directory path. If not set we use $HOME.")


class RecursiveHookException(RuntimeError):
    """Raised when a hook is invoked recursively."""


class PluginContainer(object):
    """A container for plugins.

    Returns the plugin classes curried with the session so callers do not need
    to pass it explicitly:

    findpg = session.plugins.findpg()
    """

    def __init__(self, session):
        self.session = session

    def GetPluginClass(self, name):
        """Return the active plugin class that implements plugin name."""
        for cls in plugin.Command.GetActiveClasses(self.session):
            if cls.name == name:
                return cls

    def __getattr__(self, name):
        plugin_cls = self.GetPluginClass(name)
        if plugin_cls is None:
            raise AttributeError("Plugin %s is not available." % name)

        return functools.partial(plugin_cls, session=self.session)


class Configuration(utils.AttributeDict):
    """The session's configuration is managed through this object.

    Some parameters need code to run when they are modified (e.g. changing the
    filename must drop everything we learned about the previous target). To
    make this independent of the order in which parameters are set, the
    changes are grouped using the context manager and the hooks run _after_ all
    the parameters are set:

    with session:
        session.SetParameter("filename", filename)
        session.SetParameter("symbols", symbol_file)
    """
    # The session which owns this configuration object.
    session = None

    # This holds a write lock on the configuration object.
    _lock = False
    _pending_parameters = None
    _pending_hooks = None

    def __init__(self, session=None, **kwargs):
        super(Configuration, self).__init__(**kwargs)
        self.session = session

        # These will be processed on exit from the context manager.
        self._pending_parameters = {}
        self._pending_hooks = []

        # Can not update the configuration object any more.
        self._lock = 1

    def __repr__(self):
        return "<Configuration Object>"

    def _set_filename(self, filename, _):
        # Loading another image or symbol file starts a fresh analysis. The
        # derived values (os_build, pte_base, pfn_database) are otherwise
        # never reset within a session.
        self.session.Reset()
        return filename

    def _set_symbols(self, symbols, _):
        self.session.Reset()
        return symbols

    def _set_logging_level(self, level, _):
        if isinstance(level, str):
            level = getattr(logging, level.upper(), logging.INFO)

        if level is None:
            return

        self.session.logging.debug("Logging level set to %s", level)
        self.session.logging.setLevel(int(level))

        # Create subloggers and suppress their logging level.
        for log_domain in constants.LOG_DOMAINS:
            logger = self.session.logging.getChild(log_domain)
            logger.setLevel(logging.WARNING)

    def _set_log_domain(self, domains, _):
        for domain in domains:
            logger = self.session.logging.getChild(domain)
            logger.setLevel(logging.DEBUG)

    def _set_logging_format(self, logging_format, _):
        formatter = logging.Formatter(fmt=logging_format)

        # Set the logging format on the console
        root_logger = logging.getLogger()
        if not root_logger.handlers:
            logging.basicConfig(format=logging_format)
        else:
            for handler in root_logger.handlers:
                handler.setFormatter(formatter)

        # Now set the format of our custom handler(s).
        for handler in self.session.logging.handlers:
            handler.setFormatter(formatter)

    def Set(self, attr, value):
        hook = getattr(self, "_set_%s" % attr, None)
        if hook:
            # If there is a set hook we must use the context manager.
            if self._lock > 0:
                raise ValueError(
                    "Can only update attribute %s using the context manager." %
                    attr)

            if attr not in self._pending_hooks:
                self._pending_hooks.append(attr)

            self._pending_parameters[attr] = value
        else:
            super(Configuration, self).Set(attr, value)

    def __delitem__(self, item):
        try:
            super(Configuration, self).__delitem__(item)
        except KeyError:
            pass

    def __enter__(self):
        self._lock -= 1

        return self

    def __exit__(self, exc_type, exc_value, trace):
        self._lock += 1

        # Run all the hooks _after_ all the parameters have been set.
        if self._lock == 1:
            while self._pending_hooks:
                hooks = list(reversed(self._pending_hooks))
                self._pending_hooks = []

                # Allow the hooks to call Set() by temporarily entering the
                # context manager.
                with self:
                    # Hooks can call Set() which might add more hooks.
                    for attr in hooks:
                        hook = getattr(self, "_set_%s" % attr)
                        value = self._pending_parameters[attr]

                        res = hook(value, self._pending_parameters)
                        if res is None:
                            res = value

                        self._pending_parameters[attr] = res

            for k, v in self._pending_parameters.items():
                super(Configuration, self).Set(k, v)

            self._pending_parameters = {}


class Cache(object):
    """Holds the values derived from the target.

    Each value is written once, when its parameter hook first runs. Values
    which are not volatile survive a session Reset().
    """

    def __init__(self, session):
        self.data = {}
        self.volatile_keys = set()
        self.session = session
        if session is None:
            raise RuntimeError("Session must be set")

    def Get(self, item, default=None):
        return self.data.get(item, default)

    def Set(self, item, value, volatile=True):
        if value is None:
            self.data.pop(item, None)
            self.volatile_keys.discard(item)
            return

        self.data[item] = value
        if volatile:
            self.volatile_keys.add(item)
        else:
            self.volatile_keys.discard(item)

    def Clear(self):
        for key in self.volatile_keys:
            self.data.pop(key, None)

        self.volatile_keys.clear()


class ProgressDispatcher(object):
    """An object to manage progress calls.

    Since pgscan must be usable as a library it can not block for too long.
    The scanners make continuous reports of their progress to the
    ProgressDispatcher, which then further dispatches them to other
    callbacks. This allows users of the library to be aware of how analysis is
    progressing. (e.g. to report it in a GUI).
    """

    def __init__(self):
        self.callbacks = {}

    def Register(self, key, callback):
        self.callbacks[key] = callback

    def UnRegister(self, key):
        self.callbacks.pop(key, 0)

    def Broadcast(self, message, *args, **kwargs):
        for handler in list(self.callbacks.values()):
            handler(message, *args, **kwargs)


class HoardingLogHandler(logging.Handler):
    """A logging LogHandler that stores messages as long as a renderer hasn't
    been assigned to it. Used to keep all messages that happen before a plugin
    has been initialized or run at all, to later send them to a renderer.
    """

    def __init__(self, *args, **kwargs):
        self.logrecord_buffer = []
        self.renderer = None
        super(HoardingLogHandler, self).__init__(*args, **kwargs)

    def emit(self, record):
        """Deliver a message if a renderer is defined or store it, otherwise."""
        if not self.renderer:
            self.logrecord_buffer.append(record)
        else:
            self.renderer.Log(record)

    def SetRenderer(self, renderer_obj):
        """Sets the renderer so messages can be delivered."""
        self.renderer = renderer_obj
        self.Flush()

    def Flush(self):
        """Sends all stored messages to the renderer."""
        if self.renderer:
            for log_record in self.logrecord_buffer:
                self.renderer.Log(log_record)

            self.logrecord_buffer = []


class Session(object):
    """The pgscan session.

    A session is created once per engine invocation and passed to every
    component. Everything learned about the target is memoized here.
    """

    # Each session has a unique session id (within this process).
    session_id = 0

    def __init__(self, **kwargs):
        self.progress = ProgressDispatcher()

        # Scans poll this token at their progress checkpoints.
        self.cancellation = utils.CancellationToken()

        # A container for active plugins.
        self.plugins = PluginContainer(self)

        # We use this logger if provided.
        self.logger = kwargs.pop("logger", None)
        self._logger = None
        self._log_handler = None

        # Make this session id unique.
        Session.session_id += 1
        self.session_id = Session.session_id

        # Store user configurable attributes here.
        self.state = Configuration(session=self)
        self.cache = Cache(self)
        with self.state:
            for k, v in kwargs.items():
                self.state.Set(k, v)

        # Locks for running hooks.
        self._hook_locks = set()

        self.renderers = []

    @utils.safe_property
    def logging(self):
        if self.logger is not None:
            return self.logger

        logger_name = u"pgscan.%s" % self.session_id
        if self._logger is None or self._logger.name != logger_name:
            # Set up a logging object. All pgscan logging must be done
            # through the session's logger.
            self._logger = logging.getLogger(logger_name)

            # A special log handler that hoards all messages until there's a
            # renderer that can transport them.
            self._log_handler = HoardingLogHandler()

            # Since the logger is a global it must not hold a permanent
            # reference to the HoardingLogHandler, otherwise we may never be
            # collected.
            def Remove(_, l=self._logger):
                l.handlers = []

            self._logger.addHandler(weakref.proxy(
                self._log_handler, Remove))

        return self._logger

    def __enter__(self):
        # Allow us to update the state context manager.
        self.state.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, trace):
        self.state.__exit__(exc_type, exc_value, trace)

    def Reset(self):
        """Drop all the volatile values derived from the target."""
        target = self.cache.Get("target")
        if target is not None:
            target.close()

        self.cache.Clear()

    @utils.safe_property
    def target(self):
        """The Memory & Symbol Access Port for the kernel being analysed."""
        return self.GetParameter("target")

    def HasParameter(self, item):
        """Returns if the session has the specified parameter set.

        If False, a call to GetParameter() might trigger autodetection.
        """
        return (self.state.get(item) is not None or
                self.cache.Get(item) is not None)

    def GetParameter(self, item, default=None, cached=True):
        """Retrieves a stored parameter.

        Parameters are managed by the session in two layers. The state contains
        those parameters which are deliberately set by the user.

        Some parameters are calculated by hooks and are used in order to speed
        up further calculations. These are stored in the cache.

        It is important to never override a user selection by the cached
        results. Therefore when resolving a parameter, we first check in the
        state, and only if the parameter does not exist, we check the cache.
        """
        result = self.state.get(item)
        if result is not None:
            return result

        if cached:
            result = self.cache.Get(item)
            if result is not None:
                return result

        # We don't have or didn't look in the cache for the result. See if we
        # can get if from a hook.
        try:
            result = self._RunParameterHook(item)
            if result is not None:
                return result
        except RecursiveHookException:
            pass

        return default

    def SetCache(self, item, value, volatile=True):
        """Store something in the cache."""
        self.cache.Set(item, value, volatile=volatile)

    def SetParameter(self, item, value):
        """Sets a session parameter.

        NOTE! This method should only be used for setting user provided data. It
        must not be used to set cached data - use SetCache() instead.
        """
        self.state.Set(item, value)

    def _RunParameterHook(self, name):
        """Launches the registered parameter hook for name."""
        for cls in kb.ParameterHook.classes.values():
            if cls.name == name and cls.is_active(self):
                if name in self._hook_locks:
                    # This should never happen! If it does then this will block
                    # in a loop so we fail hard.
                    raise RecursiveHookException(
                        "Trying to invoke hook %s recursively!" % name)

                try:
                    self._hook_locks.add(name)
                    hook = cls(session=self)
                    result = hook.calculate()

                    # Cache the output from the hook directly.
                    self.SetCache(name, result, volatile=hook.volatile)
                finally:
                    self._hook_locks.remove(name)

                return result

    def RunPlugin(self, plugin_obj, *args, **kwargs):
        """Launch a plugin and its render() method automatically.

        Args:
          plugin_obj: A string naming the plugin, or the plugin instance itself.
          *pos_args: Args passed to the plugin if it is not an instance.
          **kwargs: kwargs passed to the plugin if it is not an instance.
        """
        output = kwargs.pop("output", self.GetParameter("output"))
        ui_renderer = kwargs.pop("format", None)
        result = None

        if ui_renderer is None:
            ui_renderer = self.GetRenderer(output=output)

        self.renderers.append(ui_renderer)

        # Make sure the log handler exists and deliver hoarded messages.
        _ = self.logging
        self._log_handler.SetRenderer(ui_renderer)

        plugin_name = self._GetPluginName(plugin_obj)
        self.logging.debug(
            u"Running plugin (%s) with args (%s) kwargs (%s)",
            plugin_name, args, kwargs)

        with ui_renderer.start(plugin_name=plugin_name, kwargs=kwargs):
            try:
                plugin_obj = self._GetPluginObj(plugin_obj, *args, **kwargs)
                result = plugin_obj.render(ui_renderer) or plugin_obj
            finally:
                self.renderers.pop(-1)

        return result

    def _GetPluginName(self, plugin_obj):
        """Extract the name from the plugin object."""
        if isinstance(plugin_obj, str):
            return plugin_obj

        return plugin_obj.name

    def _GetPluginObj(self, plugin_obj, *args, **kwargs):
        if isinstance(plugin_obj, plugin.Command):
            return plugin_obj

        if isinstance(plugin_obj, str):
            plugin_cls = self.plugins.GetPluginClass(plugin_obj)
            if plugin_cls is None:
                raise plugin.PluginError(
                    "Plugin %s is not available." % plugin_obj)

        elif isinstance(plugin_obj, type) and issubclass(
                plugin_obj, plugin.Command):
            plugin_cls = plugin_obj

        else:
            raise TypeError(
                "First parameter should be a plugin name or instance.")

        # Instantiate the plugin object.
        kwargs["session"] = self
        return plugin_cls(*args, **kwargs)

    def report_progress(self, message=" %(spinner)s", *args, **kwargs):
        """Called by the library to report back on the progress."""
        self.progress.Broadcast(message, *args, **kwargs)

    def GetRenderer(self, output=None):
        """Get a renderer for this session.

        If a renderer is currently active we just reuse it, otherwise we
        instantiate the renderer specified in self.GetParameter("format").
        """
        # Reuse the current renderer.
        if self.renderers and output is None:
            return self.renderers[-1]

        ui_renderer = self.GetParameter("format", "text")
        if isinstance(ui_renderer, str):
            ui_renderer_cls = renderer.BaseRenderer.ImplementationByName(
                ui_renderer)
            ui_renderer = ui_renderer_cls(session=self, output=output)

        return ui_renderer

    def __str__(self):
        return u"Session %s" % self.session_id
