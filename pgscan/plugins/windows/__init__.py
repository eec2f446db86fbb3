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

from pgscan.plugins.windows import bigpools
from pgscan.plugins.windows import bugcheck
from pgscan.plugins.windows import common
from pgscan.plugins.windows import findpg
from pgscan.plugins.windows import independent
from pgscan.plugins.windows import pagetables
from pgscan.plugins.windows import pgcontext
from pgscan.plugins.windows import pooltags
from pgscan.plugins.windows import randomness
