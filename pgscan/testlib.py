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

"""Base classes and fixtures for pgscan unit tests.

Tests never need a real crash dump. FakeKernelTarget is an in-memory kernel
image made of 4kb pages which records every read and every symbol lookup, so
tests can also assert which memory was (or was not) touched.
"""
import shutil
import struct
import tempfile
import unittest

from pgscan import addrspace
from pgscan import constants
from pgscan import plugin
from pgscan import plugins  # pylint: disable=unused-import
from pgscan import registry
from pgscan import session
from pgscan import target
from pgscan.ui import text


class FakeKernelTarget(target.KernelTarget):
    """A page granular in-memory kernel target."""

    name = "fake"

    def __init__(self, session=None, symbols=None, build=None,
                 bugcheck=None, is_32bit=False):
        super(FakeKernelTarget, self).__init__(session=session)
        self.pages = {}
        self.symbols = dict(symbols or {})
        self.bugcheck = bugcheck
        self._is_32bit = is_32bit

        self.banner = None
        if build is not None:
            self.banner = (constants.BANNER_PREFIX % int(build)) + "amd64fre"

        # Every (address, length) read and every symbol name looked up.
        self.reads = []
        self.symbol_lookups = []

    def map_page(self, address):
        """Make the page containing address readable (zero filled)."""
        page = address & ~(constants.PAGE_SIZE - 1)
        return self.pages.setdefault(page, bytearray(constants.PAGE_SIZE))

    def unmap_page(self, address):
        self.pages.pop(address & ~(constants.PAGE_SIZE - 1), None)

    def write(self, address, data):
        """Write data into the image, mapping pages as needed."""
        while data:
            page = self.map_page(address)
            offset = address % constants.PAGE_SIZE
            chunk = data[:constants.PAGE_SIZE - offset]
            page[offset:offset + len(chunk)] = chunk
            address += len(chunk)
            data = data[len(chunk):]

    def write_pointer(self, address, value):
        self.write(address, struct.pack("<Q", value))

    def write_pte(self, address, valid=True, write=True, no_execute=False,
                  large_page=False, pfn=0x1234):
        """Write a hardware page table entry at address."""
        value = (pfn & 0xFFFFFFFFF) << 12
        if valid:
            value |= 1
        if write:
            value |= 1 << 1
        if large_page:
            value |= 1 << 7
        if no_execute:
            value |= 1 << 63

        self.write_pointer(address, value)

    def read(self, address, length):
        self.reads.append((address, length))

        result = []
        while length > 0:
            page = self.pages.get(address & ~(constants.PAGE_SIZE - 1))
            if page is None:
                raise addrspace.MemoryUnreadable(address)

            offset = address % constants.PAGE_SIZE
            chunk = bytes(page[offset:offset + length])
            result.append(chunk)
            address += len(chunk)
            length -= len(chunk)

        return b"".join(result)

    def was_read(self, address):
        """Was any byte of the address read?"""
        for start, length in self.reads:
            if start <= address < start + length:
                return True

        return False

    def get_address_by_name(self, name):
        self.symbol_lookups.append(name)
        try:
            return self.symbols[name]
        except KeyError:
            raise plugin.RequiredSymbolMissing(name)

    def get_build_banner(self):
        return self.banner

    def read_bugcheck_data(self):
        if self.bugcheck is None:
            return super(FakeKernelTarget, self).read_bugcheck_data()

        code, args = self.bugcheck
        return code, list(args)

    def is_32bit(self):
        return self._is_32bit

    def ResetRecords(self):
        self.reads = []
        self.symbol_lookups = []


class PGScanBaseUnitTestCase(unittest.TestCase,
                             metaclass=registry.MetaclassRegistry):
    """Base class for all pgscan unit tests."""
    __abstract = True

    temp_directory = None

    @classmethod
    def setUpClass(cls):
        super(PGScanBaseUnitTestCase, cls).setUpClass()
        cls.temp_directory = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        super(PGScanBaseUnitTestCase, cls).tearDownClass()
        if cls.temp_directory:
            shutil.rmtree(cls.temp_directory, True)

    def setUp(self):
        self.session = self.MakeUserSession()

    def MakeUserSession(self, **kwargs):
        return session.Session(**kwargs)

    def MakeFakeTarget(self, **kwargs):
        """Create a FakeKernelTarget and make it the session's target."""
        fake = FakeKernelTarget(session=self.session, **kwargs)
        with self.session:
            self.session.SetParameter("target", fake)

        return fake

    def RunPlugin(self, plugin_name, **kwargs):
        """Run the plugin and return the text it rendered."""
        ui_renderer = text.TestRenderer(session=self.session)
        self.session.RunPlugin(plugin_name, format=ui_renderer, **kwargs)
        return ui_renderer.getvalue()
