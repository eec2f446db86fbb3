#!/usr/bin/env python

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
"""Installation and deployment script."""
import os

from setuptools import find_packages, setup, Command

pgscan_description = "PatchGuard context discovery for Windows kernel memory"

current_directory = os.path.dirname(__file__)

ENV = {"__file__": __file__}
exec(open(os.path.join(current_directory, "pgscan/_version.py")).read(), ENV)
VERSION = ENV["get_versions"]()


install_requires = [
    "PyYAML",
    "sortedcontainers >= 2.0, < 3.0",
]


class CleanCommand(Command):
    description = ("custom clean command that forcefully removes "
                   "dist/build directories")
    user_options = []

    def initialize_options(self):
        self.cwd = None

    def finalize_options(self):
        self.cwd = os.getcwd()

    def run(self):
        if os.getcwd() != self.cwd:
            raise RuntimeError('Must be in package root: %s' % self.cwd)

        os.system('rm -rf ./build ./dist')


commands = {}
commands["clean"] = CleanCommand

setup(
    name="pgscan",
    version=VERSION["pep440"],
    cmdclass=commands,
    description=pgscan_description,
    long_description=open(os.path.join(current_directory, "README.rst")).read(),
    license="GPL",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
    ],
    packages=find_packages(".", include=["pgscan", "pgscan.*"]),
    python_requires=">=3.6",

    entry_points="""
    [console_scripts]
    pgscan = pgscan.main:main
    """,
    install_requires=install_requires,
    extras_require={
        "test": [
            "pytest",
            "nose2",
        ],
    }
)
