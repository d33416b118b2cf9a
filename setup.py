from setuptools import setup
from bmpcarve import __version__

setup(
	name = 'bmpcarve',
	version = __version__,
	license = 'GPLv3',
	packages = [ 'bmpcarve' ],
	provides = [ 'bmpcarve' ],
	scripts = [ 'bmpcarve-carve', 'bmpcarve-mount' ],
	extras_require = {
		'fuse': [ 'llfuse' ],
		'test': [ 'pytest' ]
	},
	description = 'Carve BMP images from disk images and memory dumps',
	classifiers = [
		'License :: OSI Approved :: GNU General Public License v3 (GPLv3)',
		'Operating System :: OS Independent',
		'Programming Language :: Python :: 3',
		'Development Status :: 5 - Production/Stable'
	]
)
