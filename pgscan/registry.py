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

"""Class registration for plugins, hooks, profiles and renderers.

Any class created with MetaclassRegistry is recorded on its top level base
class as soon as its module is imported. The session then finds commands,
parameter hooks and renderers by looking through BaseClass.classes, so adding
a feature only requires importing its module from pgscan.plugins.
"""


class classproperty(property):
    """A property that can be called on classes."""

    def __get__(self, cls, owner):
        return self.fget(owner)


class MetaclassRegistry(type):
    """Records every concrete subclass in a registry shared with its base."""

    def __init__(cls, name, bases, env_dict):
        super(MetaclassRegistry, cls).__init__(name, bases, env_dict)

        # All classes in a hierarchy share the registry of the first base
        # which has one.
        for base in bases:
            if hasattr(base, "classes"):
                cls.classes = base.classes
                break
        else:
            cls.classes = {}

        # A class is abstract if it sets its own private __abstract attribute.
        # The attribute is name mangled so it is never inherited.
        if getattr(cls, "_%s__abstract" % name, None):
            return

        if cls.__name__.startswith("Abstract"):
            return

        if cls.__name__ in cls.classes:
            raise RuntimeError(
                "Multiple definitions for class %s (%s)" % (
                    cls, cls.classes[cls.__name__]))

        cls.classes[cls.__name__] = cls

    def ImplementationByName(cls, name):
        """The registered class whose name attribute is name."""
        for impl in cls.classes.values():
            if getattr(impl, "name", None) == name:
                return impl
