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

"""This module implements a text based renderer for the command line."""
import io
import os
import re
import sys

from pgscan.ui import renderer as renderer_module


class TextColumn(object):
    """Implementation for text (mostly CLI) tables."""

    def __init__(self, table=None, renderer=None, session=None, name=None,
                 width=None, align="l", style=None, formatstring=None,
                 hidden=False, **options):
        self.table = table
        self.renderer = renderer
        self.session = session
        self.name = name or "-"
        self.align = align
        self.style = style
        self.formatstring = formatstring
        self.hidden = hidden
        self.options = options
        self.width = width or len(self.name)

    def render_header(self):
        return self.justify(self.name)

    def render_cell(self, target):
        """Convert the target to a string according to the column style."""
        if target is None:
            return "-"

        if self.style == "address":
            return self.renderer.format_address(target)

        if self.style == "hex":
            return "0x%08x" % target

        if self.formatstring:
            return format(target, self.formatstring)

        return str(target)

    def render_row(self, target):
        return self.justify(self.render_cell(target))

    def justify(self, value):
        if self.align == "r":
            return value.rjust(self.width)

        if self.align == "c":
            return value.center(self.width)

        return value.ljust(self.width)


class TextTable(renderer_module.BaseTable):
    """A table is a collection of columns.

    This table formats all its cells using proportional text font.
    """

    column_class = TextColumn

    def __init__(self, **options):
        super(TextTable, self).__init__(**options)

        # Respect the renderer's table separator preference.
        self.options.setdefault("tablesep", self.renderer.tablesep)

        # Parse the column specs into column class implementations.
        self.columns = []
        for column_specs in self.column_specs:
            column = self.column_class(session=self.session, table=self,
                                       renderer=self.renderer, **column_specs)
            self.columns.append(column)

    def write_row(self, *cells):
        line = self.options["tablesep"].join(cells)
        self.renderer.write(line.rstrip() + "\n")

    def render_header(self):
        """Returns the header lines for this table."""
        columns = [c for c in self.columns if not c.hidden]
        names = [c.render_header() for c in columns]
        separators = ["-" * c.width for c in columns]

        sep = self.options["tablesep"]
        return [sep.join(names).rstrip(), sep.join(separators)]

    def render_row(self, row=None, **options):
        """Write the row to the output."""
        cells = []
        for column, item in zip(self.columns, row):
            if not column.hidden:
                cells.append(column.render_row(item))

        self.write_row(*cells)


class TextRenderer(renderer_module.BaseRenderer):
    """Renderer for the command line that supports progress."""
    name = "text"

    tablesep = " "
    progress_fd = None

    # Render progress with a spinner.
    spinner = r"/-\|"
    last_spin = 0
    last_message_len = 0

    table_class = TextTable

    def __init__(self, tablesep=" ", output=None, mode="a", fd=None,
                 **kwargs):
        super(TextRenderer, self).__init__(**kwargs)

        # Allow the user to dump all output to a file.
        self.output = output
        if self.output:
            # We append the text output for each command. This allows the user
            # to just set it once for the session and each new command is
            # recorded in the output file.
            fd = open(self.output, mode)

        if fd is None:
            fd = sys.stdout

        self.fd = fd
        self.tablesep = tablesep

        # Write progress to stdout but only if it is a tty.
        self.progress_fd = sys.stdout
        if not self.progress_fd.isatty():
            self.progress_fd = None

        self.logging = self.session.logging.getChild("renderer.text")

    def format_address(self, address):
        return "0x%016x" % address

    def format(self, formatstring, *data):
        """Parse and interpolate the format string.

        A format string consists of a string with interpolation markers
        embedded. The syntax for an interpolation marker is {pos:spec}, where
        pos is the position of the data element to interpolate and spec is a
        python format specification. Two additional specs are supported:

        {0:addrpad} renders an address zero padded to 16 hex digits.
        {0:#x} renders an address without padding.
        """
        super(TextRenderer, self).format(formatstring, *data)

        # Only clear the progress if we share the same output stream as the
        # progress.
        if self.fd is self.progress_fd:
            self.ClearProgress()

        default_pos = 0
        # Currently use a very simple regex to format - we dont support
        # outputting {} chars.
        for part in re.split("({.*?})", formatstring):
            # Literal.
            if not part.startswith("{"):
                self.write(part)
                continue

            m = re.match(r"{(\d*)(?::(.*))?}$", part)
            if m is None:
                self.logging.error("Unknown format specifier: %s", part)
                continue

            if m.group(1):
                position = int(m.group(1))
            else:
                position = default_pos
                default_pos += 1

            option_string = m.group(2) or ""
            item = data[position]

            if option_string == "addrpad":
                self.write(self.format_address(item))

            elif option_string in ("#x", "addr"):
                self.write("%#x" % item)

            else:
                self.write(format(item, option_string))

    def write(self, data):
        self.fd.write(data)

    def flush(self):
        super(TextRenderer, self).flush()
        self.ClearProgress()
        self.fd.flush()

    def end(self):
        super(TextRenderer, self).end()

        # Each run with --output owns its file.
        if self.output:
            self.fd.close()

    def table_header(self, *args, **options):
        options["tablesep"] = self.tablesep
        super(TextRenderer, self).table_header(*args, **options)

        if self.table.options.get("suppress_headers"):
            return

        for line in self.table.render_header():
            self.write(line + "\n")

    def table_row(self, *args, **kwargs):
        """Outputs a single row of a table."""
        super(TextRenderer, self).table_row(*args, **kwargs)
        self.RenderProgress(message=None)

    def GetColumns(self):
        return int(os.environ.get("COLUMNS", 80))

    def RenderProgress(self, message=" %(spinner)s", *args, **kwargs):
        if super(TextRenderer, self).RenderProgress(**kwargs):
            self.last_spin += 1
            if not message:
                return

            # Only expand variables when we need to.
            if "%(" in message:
                kwargs["spinner"] = self.spinner[
                    self.last_spin % len(self.spinner)]

                message = message % kwargs
            elif args:
                format_args = []
                for arg in args:
                    if callable(arg):
                        format_args.append(arg())
                    else:
                        format_args.append(arg)

                message = message % tuple(format_args)

            self.ClearProgress()

            message = " " + message + "\r"

            # Truncate the message to the terminal width to avoid wrapping.
            message = message[:self.GetColumns()]

            self.last_message_len = len(message)

            self._RenderProgress(message)

            return True

    def _RenderProgress(self, message):
        """Actually write the progress message.

        This can be overwritten by renderers to deliver the progress messages
        elsewhere.
        """
        if self.progress_fd is not None:
            self.progress_fd.write(message)
            self.progress_fd.flush()

    def ClearProgress(self):
        """Delete the last progress message."""
        if self.progress_fd is None:
            return

        # Wipe the last message.
        self.progress_fd.write("\r" + " " * self.last_message_len + "\r")
        self.progress_fd.flush()


class TestRenderer(TextRenderer):
    """A special renderer which makes parsing the output of tables easier.

    Output is kept in memory and is available through getvalue().
    """
    name = "test"

    def __init__(self, **kwargs):
        kwargs.setdefault("fd", io.StringIO())
        super(TestRenderer, self).__init__(tablesep="||", **kwargs)
        self.progress_fd = None
        self.progress_messages = []

    def GetColumns(self):
        # Return a predictable and stable width.
        return 138

    def _RenderProgress(self, message):
        self.progress_messages.append(message)

    def getvalue(self):
        return self.fd.getvalue()
