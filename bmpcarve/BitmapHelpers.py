# bmpcarve: carve BMP images from binary blobs
#
# This module contains various helper functions (and a sink to write carved data to a directory).

from os import path, linesep, makedirs
from hashlib import md5
from .BitmapFile import SEGMENT_IMAGE, SEGMENT_OTHER

OUTPUT_DIRECTORY_SUFFIX = '_Output'

EXTENSIONS = {
	SEGMENT_IMAGE: '.bmp',
	SEGMENT_OTHER: '.other'
}

def Fingerprint(Buffer):
	"""Return the MD5 hash of Buffer (as a hex string)."""

	return md5(Buffer).hexdigest()

def FingerprintCompatible(Buffer):
	"""Return the MD5 hash (as a hex string) the way the original carver calculated it:
	the hash of a dash-separated hex representation of Buffer (like '42-4D-36'), not the hash of Buffer itself.
	"""

	source = '-'.join('{:02X}'.format(c) for c in bytearray(Buffer))
	return md5(source.encode('utf-8')).hexdigest()

def SegmentFilename(Offset, Kind):
	"""Return a file name for a segment: its offset and an extension for its kind."""

	return '{}{}'.format(Offset, EXTENSIONS[Kind])

def HexDump(Buffer):
	"""Return bytes from Buffer as a hexdump-like string (16 bytes per line)."""

	def int2hex(i):
		return '{:02X}'.format(i)

	if type(Buffer) is not bytearray:
		Buffer = bytearray(Buffer)

	output_lines = []

	i = 0
	while i < len(Buffer):
		bytes_line = Buffer[i : i + 16]

		hex_parts = []
		ascii_line = ''
		for single_byte in bytes_line:
			hex_parts.append(int2hex(single_byte))

			if single_byte >= 32 and single_byte <= 126:
				ascii_line += chr(single_byte)
			else:
				ascii_line += '.'

		hex_line = ' '.join(hex_parts[ : 8])
		if len(hex_parts) > 8:
			hex_line += '-' + ' '.join(hex_parts[8 : ])

		output_lines.append(int2hex(i).zfill(8) + ' ' * 2 + hex_line.ljust(47) + ' ' * 2 + ascii_line)

		i += 16

	return linesep.join(output_lines)

class DirectorySink(object):
	"""This class is used to write carved segments to a directory, one file per segment (named by its offset and kind)."""

	def __init__(self, directory):
		self.directory = directory
		self.written = []
		"""Paths of files written so far."""

	@classmethod
	def for_input(cls, input_path):
		"""Create a sink writing to a directory next to an input file (the input path plus '_Output')."""

		return cls(input_path + OUTPUT_DIRECTORY_SUFFIX)

	def persist(self, offset, buffer, kind):
		"""Write a segment to a new file. If the file exists, FileExistsError is raised."""

		if not path.isdir(self.directory):
			makedirs(self.directory)

		file_path = path.join(self.directory, SegmentFilename(offset, kind))
		with open(file_path, 'xb') as f:
			f.write(buffer)

		self.written.append(file_path)
		return file_path
