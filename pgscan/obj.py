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

"""The pgscan object model.

Kernel structures are described with the vtype language: a dict mapping a type
name to its size and its members, each member being an offset and a type
expression:

  '_POOL_TRACKER_BIG_PAGES': [0x18, {
      'Va': [0x0, ['unsigned long long']],
      'Key': [0x8, ['String', dict(length=4)]],
      }],

A Profile compiles these descriptions into Struct classes on demand and
instantiates them over an address space. Structures overlaid onto a buffer
which was read from untrusted memory are checked against the declared
structure size first, so a truncated buffer produces a DecodeError instead of
a partially decoded structure.
"""
import functools
import struct

from pgscan import addrspace
from pgscan import plugin
from pgscan import registry


class BaseObject(object):
    """Base class for all objects created from a Profile."""

    obj_parent = None
    obj_name = None
    obj_type = None

    def __init__(self, type_name=None, offset=0, vm=None, profile=None,
                 name=None, parent=None, session=None, **kwargs):
        """Constructor for Base object.

        Args:
          type_name: The name of the type of this object. This is the name
             used to instantiate the object from the profile.

          offset: The offset within the address space to this object exists.

          vm: The address space this object uses to read itself from.

          profile: The profile this object may use to dereference other
           types.

          name: A name for this object.

          parent: The object which created this object.

          session: The session we use.
        """
        if kwargs:
            raise TypeError("Unknown args %s for %s" % (
                list(kwargs), self.__class__.__name__))

        self.obj_type = type_name or self.__class__.__name__
        self.obj_offset = offset
        self.obj_vm = vm
        self.obj_profile = profile
        self.obj_name = name
        self.obj_parent = parent
        self.obj_session = session

    @property
    def obj_size(self):
        return 0

    def v(self):
        """Return the python value of this object."""
        return self

    def __repr__(self):
        return "[%s %s] @ 0x%08X" % (self.__class__.__name__, self.obj_name,
                                     self.obj_offset)


class NativeType(BaseObject):
    """A scalar read through the struct module."""

    def __init__(self, format_string="<I", **kwargs):
        super(NativeType, self).__init__(**kwargs)
        self.format_string = format_string

    @property
    def obj_size(self):
        return struct.calcsize(self.format_string)

    def v(self):
        data = self.obj_vm.read(self.obj_offset, self.obj_size)
        return struct.unpack(self.format_string, data)[0]

    def __int__(self):
        return int(self.v())

    def __index__(self):
        return int(self.v())

    def __eq__(self, other):
        return self.v() == other

    def __hash__(self):
        return hash(self.v())

    def __format__(self, formatspec):
        return format(self.v(), formatspec)

    def __repr__(self):
        return " [%s:%s]: 0x%08X" % (self.obj_type, self.obj_name, self.v())


class BitField(NativeType):
    """A range of bits inside a native type."""

    def __init__(self, start_bit=0, end_bit=32, native_type=None, **kwargs):
        native_type = native_type or "unsigned long"
        super(BitField, self).__init__(
            format_string=NATIVE_TYPES[native_type], **kwargs)

        self.start_bit = start_bit
        self.end_bit = end_bit

    def v(self):
        i = super(BitField, self).v()
        return (i & ((1 << self.end_bit) - 1)) >> self.start_bit


class Pointer(NativeType):
    """A 64 bit pointer to another type.

    Pointers are never followed automatically: the target may not be readable
    and kernel pointers are merely reported.
    """

    def __init__(self, target=None, target_args=None, **kwargs):
        super(Pointer, self).__init__(format_string="<Q", **kwargs)
        self.target = target
        self.target_args = target_args or {}

    def __repr__(self):
        return "<%s Pointer to [%#x] (%s)>" % (
            self.target, self.v(), self.obj_name)


class String(BaseObject):
    """A fixed length, possibly null terminated string."""

    def __init__(self, length=1, term=b"\x00", **kwargs):
        super(String, self).__init__(**kwargs)
        self.length = length
        self.term = term

    @property
    def obj_size(self):
        return self.length

    def v(self):
        data = self.obj_vm.read(self.obj_offset, self.length)
        if self.term is not None:
            data = data.split(self.term, 1)[0]

        return data

    def __str__(self):
        return self.v().decode("latin-1")


class Array(BaseObject):
    """A fixed count of consecutive objects."""

    def __init__(self, target=None, target_args=None, count=0, **kwargs):
        super(Array, self).__init__(**kwargs)
        self.target = target
        self.target_args = target_args or {}

        # The count may depend on other members of the parent struct.
        if callable(count):
            count = count(self.obj_parent)

        self.count = int(count)

    @property
    def target_size(self):
        return self.obj_profile.get_obj_size(self.target)

    @property
    def obj_size(self):
        return self.count * self.target_size

    def __len__(self):
        return self.count

    def __getitem__(self, pos):
        if not 0 <= pos < self.count:
            raise IndexError("Index %s out of range for %s" % (pos, self))

        return self.obj_profile.Object(
            self.target, offset=self.obj_offset + pos * self.target_size,
            vm=self.obj_vm, parent=self, name="%s[%d]" % (self.obj_name, pos),
            **self.target_args)

    def __iter__(self):
        for pos in range(self.count):
            yield self[pos]

    def v(self):
        return [x.v() for x in self]


class Struct(BaseObject):
    """A Struct is an object which is a collection of members.

    Members which are scalars are returned as python ints when accessed as
    attributes. Use m() to get the member object itself.
    """

    # A dict of member name -> (offset, member factory). Filled in by the
    # profile when the struct class is compiled.
    members = None

    # The declared size of this struct.
    struct_size = 0

    @property
    def obj_size(self):
        return self.struct_size

    def m(self, attr):
        """Fetch the member named attr."""
        try:
            offset, factory = self.members[attr]
        except KeyError:
            raise AttributeError("%s has no member %s" % (self.obj_type, attr))

        return factory(offset=self.obj_offset + offset, vm=self.obj_vm,
                       parent=self, name=attr)

    def __getattr__(self, attr):
        if attr.startswith("_") or self.members is None:
            raise AttributeError(attr)

        result = self.m(attr)
        if isinstance(result, NativeType):
            return result.v()

        return result

    def __dir__(self):
        return sorted(self.members)

    def __repr__(self):
        return "[%s %s] @ 0x%08X" % (self.obj_type, self.obj_name or '',
                                     self.obj_offset)


NATIVE_TYPES = {
    "unsigned char": "<B",
    "char": "<b",
    "unsigned short": "<H",
    "short": "<h",
    "unsigned int": "<I",
    "int": "<i",
    "unsigned long": "<I",
    "long": "<i",
    "unsigned long long": "<Q",
    "long long": "<q",
    "address": "<Q",
}


class Profile(object, metaclass=registry.MetaclassRegistry):
    """A collection of types relating to a single kernel generation."""

    __abstract = True

    # An empty type descriptor.
    EMPTY_DESCRIPTOR = [0, {}]

    object_classes = {
        "BitField": BitField,
        "Pointer": Pointer,
        "String": String,
        "Array": Array,
    }

    def __init__(self, session=None, name=None):
        if session is None:
            raise RuntimeError("Session must be set")

        self.session = session
        self.name = name or self.__class__.__name__
        self.vtypes = {}
        self.types = {}

    def add_types(self, abstract_types):
        """Merge the vtype definitions into this profile."""
        self.types = {}
        for k, v in abstract_types.items():
            original = self.vtypes.get(k, self.EMPTY_DESCRIPTOR)
            members = dict(original[1])
            members.update(v[1])
            size = v[0] if v[0] is not None else original[0]
            self.vtypes[k] = [size, members]

    def legacy_field_descriptor(self, type_list):
        """Converts the list expression into a target, target_args notation.

        Args:
           type_list: A list of types. e.g. ['pointer', ['_KPRCB']]

        Returns:
           A target, target_args tuple. Target is the class name which should be
           instantiated, while target_args is a dict of args to be passed to
           this class.
        """
        # This is of the form [ '_KPRCB' ] - First element is the target
        # name, with no args.
        if len(type_list) == 1:
            target = type_list[0]
            target_args = {}

        # This is of the form [ 'pointer' , [ 'foobar' ]]
        elif type_list[0] == "pointer":
            target = "Pointer"
            target_args = dict(target=type_list[1][0])

        # This is an array: [ 'array', count, ['foobar'] ]
        elif type_list[0] == "array":
            target = "Array"
            target_args = self.legacy_field_descriptor(type_list[2])
            target_args["count"] = type_list[1]

        else:
            target = type_list[0]
            target_args = type_list[1]

        return dict(target=target, target_args=target_args)

    def compile_type(self, type_name):
        """Compile the named vtype into a Struct class."""
        if type_name in self.types or type_name not in self.vtypes:
            return

        size, member_specs = self.vtypes[type_name]
        members = {}
        for member_name, (offset, type_list) in member_specs.items():
            spec = self.legacy_field_descriptor(type_list)
            members[member_name] = (offset, functools.partial(
                self.Object, spec["target"], **spec["target_args"]))

        self.types[type_name] = type(
            str(type_name), (Struct,),
            dict(members=members, struct_size=size))

    def get_obj_size(self, type_name):
        """Returns the size of a type."""
        if type_name in NATIVE_TYPES:
            return struct.calcsize(NATIVE_TYPES[type_name])

        try:
            return self.vtypes[type_name][0]
        except KeyError:
            raise plugin.DecodeError("Unknown type %s in profile %s" % (
                type_name, self.name))

    def get_obj_offset(self, type_name, member):
        """Returns a member's offset within the struct."""
        try:
            return self.vtypes[type_name][1][member][0]
        except KeyError:
            raise plugin.DecodeError("%s has no member %s" % (
                type_name, member))

    def Object(self, type_name=None, offset=0, vm=None, name=None,
               parent=None, **kwargs):
        """Instantiate the object named in type_name over the address space.

        Args:
          type_name: The name of the Struct to instantiate (e.g. _HARDWARE_PTE).

          vm: The address space to instantiate the object onto.

          offset: The location in the address space where the object is
            instantiated.

          name: An optional name for the object.

          parent: The object can maintain a reference to its parent object.
        """
        name = name or type_name
        kwargs.update(type_name=type_name, offset=int(offset), vm=vm,
                      name=name, parent=parent, profile=self,
                      session=self.session)

        if type_name in NATIVE_TYPES:
            return NativeType(format_string=NATIVE_TYPES[type_name], **kwargs)

        if type_name in self.object_classes:
            return self.object_classes[type_name](**kwargs)

        self.compile_type(type_name)
        cls = self.types.get(type_name)
        if cls is None:
            raise plugin.DecodeError("Unknown type %s in profile %s" % (
                type_name, self.name))

        return cls(**kwargs)

    def Overlay(self, type_name, data, offset=0):
        """Overlay a structure onto a buffer read from memory.

        The buffer must hold at least the full declared size of the type.

        Args:
          type_name: The type to overlay.
          data: The bytes read from the target.
          offset: The address the data was read from.

        Raises:
          plugin.DecodeError if the buffer is too short.
        """
        size = self.get_obj_size(type_name)
        if data is None or len(data) < size:
            raise plugin.DecodeError(
                "Buffer of %d bytes is too short for %s (%#x bytes)." % (
                    len(data or b""), type_name, size))

        vm = addrspace.BufferAddressSpace(
            base_offset=offset, data=data[:size], session=self.session)

        return self.Object(type_name, offset=offset, vm=vm)

    def __str__(self):
        return u"<profile %s (%s)>" % (self.name, self.__class__.__name__)
