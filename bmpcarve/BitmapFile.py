# bmpcarve: carve BMP images from binary blobs
#
# This module implements a low-level interface to read a source (a disk image, a memory image, or similar data) and to parse BMP headers.

from struct import unpack
import mmap

BMP_SIGNATURE = b'BM'

SEGMENT_IMAGE = 'image'
SEGMENT_OTHER = 'other'

FILE_HEADER_LENGTH = 14 # BITMAPFILEHEADER.
DIB_HEADER_SIZE_FIELD_END = FILE_HEADER_LENGTH + 4 # We need these bytes to learn the size of a DIB header.

# BITMAPINFOHEADER, BITMAPV2INFOHEADER, BITMAPV3INFOHEADER, BITMAPV5HEADER, and the 128-byte variant found in the wild.
# BITMAPCOREHEADER (12 bytes) is not supported.
DIB_HEADER_SIZES_SUPPORTED = set([40, 52, 56, 124, 128])

BITS_PER_PIXEL_SUPPORTED = set([1, 2, 4, 8, 16, 24, 32, 64])

PIXEL_ARRAY_SIZE_MAX = 0x7FFFFFFF # The pixel array size must fit into a signed 32-bit integer.

# Offsets (relative to the beginning of a file header).
OFFSET_FILE_SIZE = 2
OFFSET_PIXEL_ARRAY = 10
OFFSET_DIB_HEADER_SIZE = 14
OFFSET_IMAGE_WIDTH = 18
OFFSET_IMAGE_HEIGHT = 22
OFFSET_COLOR_PLANES = 26
OFFSET_BITS_PER_PIXEL = 28
OFFSET_BITS_PER_PIXEL_LEGACY = 14 # The original carver decoded this field from the DIB header size field.

class BitmapException(Exception):
	"""This is a top-level exception for this module."""

	pass

class ReadException(BitmapException):
	"""This exception is raised when a read error has occurred (including an attempt to read beyond the end of a source).
	This exception does not supersede standard I/O exceptions.
	"""

	def __init__(self, value):
		self._value = value

	def __str__(self):
		return repr(self._value)

class HeaderException(BitmapException):
	"""This exception is raised when a header buffer is too short for the header it describes."""

	def __init__(self, value):
		self._value = value

	def __str__(self):
		return repr(self._value)

class PlanningException(BitmapException):
	"""This exception is raised when segments cannot be planned for a given list of regions."""

	def __init__(self, value):
		self._value = value

	def __str__(self):
		return repr(self._value)

class NoImagesFoundException(BitmapException):
	"""This exception is raised when no valid BMP image has been found in a source."""

	def __init__(self, value):
		self._value = value

	def __str__(self):
		return repr(self._value)

class ByteSource(object):
	"""This class provides read-only, bounds-checked access to a source.
	A source (as a file object) is mapped (if possible) or read into the memory, there is no streaming mode.
	"""

	fileno = None
	file_object = None
	mode = None

	def __init__(self, file_object_or_bytes_object):
		try:
			file_object_or_bytes_object.read
			file_object_or_bytes_object.seek
		except AttributeError:
			# This is a bytes-like object.
			self.mode = 1
			self.data = bytes(file_object_or_bytes_object)
			return

		# This is a file object.
		self.file_object = file_object_or_bytes_object

		try:
			self.fileno = self.file_object.fileno()
			self.data = mmap.mmap(self.fileno, 0, access = mmap.ACCESS_READ)
		except (OSError, ValueError): # No file descriptor or an empty file.
			self.file_object.seek(0)
			self.data = self.file_object.read()
			self.mode = 3
		else:
			self.mode = 2

	def size(self):
		return len(self.data)

	def read(self, pos, size):
		"""Read and return exactly 'size' bytes starting at 'pos'. A read is never clamped."""

		if pos < 0 or size < 0 or pos + size > len(self.data):
			raise ReadException('Cannot read data (offset: {}, size: {}, source size: {})'.format(pos, size, len(self.data)))

		return bytes(self.data[pos : pos + size])

	def byte(self, pos):
		"""Read and return a single byte (as an integer)."""

		if pos < 0 or pos >= len(self.data):
			raise ReadException('Cannot read data (offset: {}, source size: {})'.format(pos, len(self.data)))

		return self.data[pos]

	def find(self, signature, start = 0, end = None):
		"""Return the offset of the next signature at or after 'start' and ending before 'end' (or -1)."""

		if end is None:
			end = len(self.data)

		return self.data.find(signature, start, end)

	def close(self):
		if self.mode == 2:
			self.data.close()

class BitmapHeader(object):
	"""This is a class for a file header and a DIB header of a BMP file, it provides methods to access and derive various fields.
	Most methods are self-explanatory.
	"""

	offset = None
	"""An offset of this header in a source."""

	legacy_layout = None
	"""True if the bits per pixel field is decoded the way the original carver did it (from the DIB header size field)."""

	def __init__(self, buf, offset = 0, legacy_layout = False):
		self.buf = buf
		self.offset = offset
		self.legacy_layout = legacy_layout

		if len(self.buf) < DIB_HEADER_SIZE_FIELD_END:
			raise HeaderException('Header is too short: {} bytes'.format(len(self.buf)))

		header_length = self.get_header_length()
		if len(self.buf) < header_length:
			raise HeaderException('Header is truncated (expected: {} bytes, got: {} bytes)'.format(header_length, len(self.buf)))

		# The header must contain the fields we decode.
		if not legacy_layout:
			fields_end = OFFSET_BITS_PER_PIXEL + 2
		else:
			fields_end = OFFSET_IMAGE_HEIGHT + 4

		if header_length < fields_end:
			raise HeaderException('DIB header is too short: {} bytes'.format(self.get_dib_header_size()))

	def read_uint16(self, pos):
		return unpack('<H', self.buf[pos : pos + 2])[0]

	def read_uint32(self, pos):
		return unpack('<L', self.buf[pos : pos + 4])[0]

	def read_int32(self, pos):
		return unpack('<l', self.buf[pos : pos + 4])[0]

	def get_signature(self):
		return self.buf[ : 2]

	def get_declared_file_size(self):
		return self.read_uint32(OFFSET_FILE_SIZE)

	def get_pixel_array_offset(self):
		return self.read_uint32(OFFSET_PIXEL_ARRAY)

	def get_dib_header_size(self):
		return self.read_uint32(OFFSET_DIB_HEADER_SIZE)

	def get_header_length(self):
		"""Get and return the length of the file header and the DIB header combined."""

		return FILE_HEADER_LENGTH + self.get_dib_header_size()

	def get_image_width(self):
		return self.read_int32(OFFSET_IMAGE_WIDTH)

	def get_image_height(self):
		return self.read_int32(OFFSET_IMAGE_HEIGHT)

	def get_color_planes(self):
		if self.legacy_layout:
			return

		return self.read_uint16(OFFSET_COLOR_PLANES)

	def get_bits_per_pixel(self):
		if self.legacy_layout:
			return self.read_uint32(OFFSET_BITS_PER_PIXEL_LEGACY)

		return self.read_uint16(OFFSET_BITS_PER_PIXEL)

	def get_row_size(self):
		"""Get and return the size of a row (in bytes), rows are padded to 4 bytes."""

		return ((self.get_bits_per_pixel() * self.get_image_width() + 31) // 32) * 4

	def get_pixel_array_size(self):
		return self.get_row_size() * self.get_image_height()

	def get_image_data_size(self):
		"""Get and return the number of bytes to carve. This is the file size field."""

		return self.get_declared_file_size()

	def get_end_offset(self):
		"""Get and return the end offset (exclusive) of this image in a source."""

		return self.offset + self.get_image_data_size()
