# bmpcarve: carve BMP images from binary blobs
#
# This module implements an interface to carve BMP images (and data between them) from a disk image (or a memory image).

from . import BitmapFile, BitmapHelpers
from .BitmapFile import ReadException, HeaderException, PlanningException, NoImagesFoundException, SEGMENT_IMAGE, SEGMENT_OTHER
from collections import namedtuple
from struct import unpack
import logging

logger = logging.getLogger(__name__)

# Reasons to reject a candidate.
REASON_MALFORMED = 'malformed header'
REASON_HEADER_SIZE = 'unsupported DIB header size'
REASON_DIMENSIONS = 'invalid image dimensions'
REASON_BITS_PER_PIXEL = 'unsupported bits per pixel'
REASON_PIXEL_ARRAY = 'inconsistent pixel array size'
REASON_FILE_SIZE = 'declared size is smaller than the header'
REASON_OUT_OF_BOUNDS = 'image extends beyond the end of the source'

CALLBACK_THRESHOLD = 1*1024*1024 # In bytes.
SCAN_CHUNK_SIZE = CALLBACK_THRESHOLD

HeaderCheckResult = namedtuple('HeaderCheckResult', [ 'is_valid', 'reason' ])
ValidatedRegion = namedtuple('ValidatedRegion', [ 'offset', 'end_offset', 'header' ])
Segment = namedtuple('Segment', [ 'offset', 'end_offset', 'kind' ])
CarveResult = namedtuple('CarveResult', [ 'offset', 'size', 'kind', 'fingerprint' ])

def ScanSignatures(Source, ChunkSize = SCAN_CHUNK_SIZE, ProgressCallback = None):
	"""Yield each offset of the BMP signature in Source (a ByteSource object), in the increasing order.
	The source is scanned in chunks of ChunkSize bytes, ProgressCallback (if given) is called after each chunk. Arguments: bytes_scanned, bytes_total.
	"""

	source_size = Source.size()

	chunk_start = 0
	while chunk_start < source_size - 1: # The second byte of the signature must be within the source.
		chunk_end = min(chunk_start + ChunkSize, source_size - 1) # Signatures starting before this offset belong to this chunk.

		pos = chunk_start
		while True:
			pos = Source.find(BitmapFile.BMP_SIGNATURE, pos, chunk_end + 1)
			if pos == -1:
				break

			yield pos

			pos += 1 # Signatures are not assumed to be spaced apart.

		chunk_start = chunk_end

		if ProgressCallback is not None:
			ProgressCallback(chunk_end + 1, source_size)

def ParseHeader(Source, Offset, LegacyLayout = False):
	"""Read and parse a file header and a DIB header at Offset in Source (a ByteSource object).
	Return a BitmapHeader object or None, if the headers cannot be read within the bounds of the source.
	"""

	try:
		buf = Source.read(Offset, BitmapFile.DIB_HEADER_SIZE_FIELD_END)
		dib_header_size, = unpack('<L', buf[BitmapFile.OFFSET_DIB_HEADER_SIZE : BitmapFile.DIB_HEADER_SIZE_FIELD_END])

		buf = Source.read(Offset, BitmapFile.FILE_HEADER_LENGTH + dib_header_size)
		return BitmapFile.BitmapHeader(buf, Offset, LegacyLayout)
	except (ReadException, HeaderException):
		return

def CheckHeader(Header, SourceSize = None):
	"""Check if Header (a BitmapHeader object) describes a valid BMP image, return a named tuple (HeaderCheckResult).
	If SourceSize is given, an image extending beyond the end of a source is rejected.
	"""

	dib_header_size = Header.get_dib_header_size()
	if dib_header_size not in BitmapFile.DIB_HEADER_SIZES_SUPPORTED:
		return HeaderCheckResult(is_valid = False, reason = REASON_HEADER_SIZE)

	width = Header.get_image_width()
	height = Header.get_image_height()
	if width <= 0 or height <= 0:
		return HeaderCheckResult(is_valid = False, reason = REASON_DIMENSIONS)

	bits_per_pixel = Header.get_bits_per_pixel()
	if bits_per_pixel <= 0 or (not Header.legacy_layout and bits_per_pixel not in BitmapFile.BITS_PER_PIXEL_SUPPORTED):
		return HeaderCheckResult(is_valid = False, reason = REASON_BITS_PER_PIXEL)

	row_size = Header.get_row_size()
	pixel_array_size = Header.get_pixel_array_size()
	if row_size <= 0 or pixel_array_size != row_size * height or pixel_array_size > BitmapFile.PIXEL_ARRAY_SIZE_MAX:
		return HeaderCheckResult(is_valid = False, reason = REASON_PIXEL_ARRAY)

	if Header.get_image_data_size() < Header.get_header_length():
		return HeaderCheckResult(is_valid = False, reason = REASON_FILE_SIZE)

	if SourceSize is not None and Header.get_end_offset() > SourceSize:
		return HeaderCheckResult(is_valid = False, reason = REASON_OUT_OF_BOUNDS)

	return HeaderCheckResult(is_valid = True, reason = None)

def IsValid(Header, SourceSize = None):
	"""Return True if Header (a BitmapHeader object) describes a valid BMP image."""

	return CheckHeader(Header, SourceSize).is_valid

def OrderRegions(Regions):
	"""Return a list of validated regions sorted by their end offsets. Regions with the same end offset keep their order.
	Overlapping regions are neither merged nor removed.
	"""

	return sorted(Regions, key = lambda region: region.end_offset)

def PlanSegments(OrderedRegions, TotalSize):
	"""Split a source of TotalSize bytes into a list of named tuples (Segment) according to OrderedRegions (as returned by OrderRegions()).
	Each region becomes an image segment, data around and between regions becomes other segments.
	Overlapping regions yield overlapping image segments.
	"""

	if len(OrderedRegions) == 0:
		raise PlanningException('No regions to plan segments for')

	for region in OrderedRegions:
		if region.offset < 0 or region.end_offset < region.offset or region.end_offset > TotalSize:
			raise PlanningException('Region is out of bounds: {}-{} (total size: {})'.format(region.offset, region.end_offset, TotalSize))

	segments = []

	first_start = min(region.offset for region in OrderedRegions)
	if first_start != 0: # There is data before the first image.
		segments.append(Segment(offset = 0, end_offset = first_start, kind = SEGMENT_OTHER))

	prev_region = None
	for region in OrderedRegions:
		if prev_region is not None and prev_region.end_offset < region.offset: # There is a gap between two images.
			segments.append(Segment(offset = prev_region.end_offset, end_offset = region.offset, kind = SEGMENT_OTHER))

		segments.append(Segment(offset = region.offset, end_offset = region.end_offset, kind = SEGMENT_IMAGE))
		prev_region = region

	if prev_region.end_offset < TotalSize: # There is data after the last image.
		segments.append(Segment(offset = prev_region.end_offset, end_offset = TotalSize, kind = SEGMENT_OTHER))

	return segments

class Carver(object):
	"""This class is used to carve BMP images and data between them from a source (a bytes-like object, a file object, or a ByteSource object)."""

	progress_callback = None
	"""A progress callback. Arguments: bytes_scanned, bytes_total."""

	rejection_callback = None
	"""A callback for rejected candidates. Arguments: offset, reason."""

	def __init__(self, source, legacy_layout = False):
		"""Arguments:
		 - source: a bytes-like object, a file object, or a ByteSource object;
		 - legacy_layout: when True, decode the bits per pixel field the way the original carver did it (from the DIB header size field).
		"""

		if isinstance(source, BitmapFile.ByteSource):
			self.source = source
		else:
			self.source = BitmapFile.ByteSource(source)

		self.legacy_layout = legacy_layout
		self.callback_threshold = CALLBACK_THRESHOLD
		self._last_progress_step = 0

	def call_progress_callback(self, bytes_scanned, bytes_total):
		"""Call the progress callback, if defined."""

		if self.progress_callback is None:
			return

		if bytes_scanned // self.callback_threshold == self._last_progress_step and bytes_scanned != bytes_total:
			return

		self._last_progress_step = bytes_scanned // self.callback_threshold
		self.progress_callback(bytes_scanned, bytes_total)

	def reject(self, offset, reason):
		logger.debug('Candidate rejected at %d: %s', offset, reason)

		if self.rejection_callback is not None:
			self.rejection_callback(offset, reason)

	def find_regions(self):
		"""This method yields named tuples (ValidatedRegion), in the order of their offsets."""

		source_size = self.source.size()
		self._last_progress_step = 0

		for offset in ScanSignatures(self.source, self.callback_threshold, self.call_progress_callback):
			header = ParseHeader(self.source, offset, self.legacy_layout)
			if header is None:
				self.reject(offset, REASON_MALFORMED)
				continue

			check_result = CheckHeader(header, source_size)
			if not check_result.is_valid:
				self.reject(offset, check_result.reason)
				continue

			yield ValidatedRegion(offset = offset, end_offset = header.get_end_offset(), header = header)

	def plan(self):
		"""Find, order, and split the source into segments, return a list of named tuples (Segment).
		If no valid image is found, NoImagesFoundException is raised.
		"""

		regions = OrderRegions(self.find_regions())
		if len(regions) == 0:
			raise NoImagesFoundException('No BMP images found')

		segments = PlanSegments(regions, self.source.size())
		logger.info('Found %d image(s), planned %d segment(s)', len(regions), len(segments))

		return segments

	def carve(self, sink = None, digest = BitmapHelpers.Fingerprint):
		"""This method yields named tuples (CarveResult), one for each segment.
		If 'sink' is given, its persist(offset, buffer, kind) method is called for each segment.
		If 'digest' is None, the 'fingerprint' field is None.
		If no valid image is found, NoImagesFoundException is raised.
		"""

		for segment in self.plan():
			size = segment.end_offset - segment.offset
			buf = self.source.read(segment.offset, size)

			if sink is not None:
				sink.persist(segment.offset, buf, segment.kind)

			if digest is not None:
				fingerprint = digest(buf)
			else:
				fingerprint = None

			yield CarveResult(offset = segment.offset, size = size, kind = segment.kind, fingerprint = fingerprint)
