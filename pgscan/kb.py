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

"""Lazily derived session parameters.

Much of what pgscan needs to know about the target (its build, where the page
tables are mapped, which pool layout it uses) is cheap to keep but costly or
impossible to derive more than once. A ParameterHook derives one such value
the first time the session is asked for it and the session caches the answer.
"""

from pgscan import registry


class ParameterHook(object, metaclass=registry.MetaclassRegistry):
    """Derives the session parameter called name."""
    __abstract = True

    # The session parameter this hook provides.
    name = None

    # Volatile values are dropped when the session is reset.
    volatile = True

    @classmethod
    def is_active(cls, session):
        _ = session
        return True

    def __init__(self, session):
        if session is None:
            raise RuntimeError("Session must be set")

        self.session = session

    def calculate(self):
        """Derive the value of the parameter."""
