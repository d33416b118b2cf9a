# bmpcarve: carve BMP images from binary blobs
#
# This module implements a FUSE interface (a read-only directory of carved segments).

from . import BitmapCarve, BitmapHelpers
import llfuse
import os
import stat
import errno

FIRST_SEGMENT_INODE = llfuse.ROOT_INODE + 1

class BitmapFS(llfuse.Operations):
	"""This is an implementation of a FUSE file system (llfuse) for carved segments of a source.
	Each segment is a file in the root directory, named like DirectorySink names it.
	"""

	def __init__(self, image_path, legacy_layout = False):
		super(BitmapFS, self).__init__()

		# Open the source.
		self._bmp_file = open(image_path, 'rb')

		# Plan the segments (NoImagesFoundException is raised if there is nothing to carve).
		try:
			self._bmp_carver = BitmapCarve.Carver(self._bmp_file, legacy_layout)
			self._bmp_segments = self._bmp_carver.plan()
		except Exception:
			self._bmp_file.close()
			raise

		self._bmp_names = dict()
		for i, segment in enumerate(self._bmp_segments):
			name = BitmapHelpers.SegmentFilename(segment.offset, segment.kind)
			self._bmp_names[name] = FIRST_SEGMENT_INODE + i

		self._bmp_handles = []

	def _bmp_get_segment(self, inode):
		index = inode - FIRST_SEGMENT_INODE
		if index < 0 or index >= len(self._bmp_segments):
			raise llfuse.FUSEError(errno.ENOENT)

		return self._bmp_segments[index]

	def _bmp_construct_attr(self, inode):
		attr = llfuse.EntryAttributes()

		attr.st_ino = inode
		attr.generation = 0

		attr.entry_timeout = 300
		attr.attr_timeout = 300

		attr.st_nlink = 1

		if inode == llfuse.ROOT_INODE:
			attr.st_mode = (stat.S_IFDIR | 0o555)
			attr.st_size = 4096
		else:
			segment = self._bmp_get_segment(inode)

			attr.st_mode = (stat.S_IFREG | 0o444)
			attr.st_size = segment.end_offset - segment.offset

		attr.st_uid = os.getuid()
		attr.st_gid = os.getgid()

		attr.st_atime_ns = 0
		attr.st_mtime_ns = 0
		attr.st_ctime_ns = 0

		attr.st_rdev = 0
		attr.st_blksize = 512
		attr.st_blocks = (attr.st_size + 512 - 1) // 512

		return attr

	def _bmp_inode_to_handle(self, inode):
		self._bmp_handles.append(inode)
		return inode

	def _bmp_handle_to_inode(self, handle):
		if handle not in self._bmp_handles:
			raise llfuse.FUSEError(errno.EBADF)

		return handle

	def _bmp_release_handle(self, handle):
		inode = self._bmp_handle_to_inode(handle)
		self._bmp_handles.remove(inode)

	def destroy(self):
		self._bmp_carver.source.close()
		self._bmp_file.close()

	def access(self, inode, mode, ctx):
		return mode & os.W_OK == 0

	def getattr(self, inode, ctx):
		return self._bmp_construct_attr(inode)

	def lookup(self, parent_inode, name, ctx):
		if parent_inode != llfuse.ROOT_INODE:
			raise llfuse.FUSEError(errno.ENOTDIR)

		name = name.decode('ascii', 'replace')

		if name == '.' or name == '..':
			return self._bmp_construct_attr(llfuse.ROOT_INODE)

		inode = self._bmp_names.get(name)
		if inode is None:
			raise llfuse.FUSEError(errno.ENOENT)

		return self._bmp_construct_attr(inode)

	def open(self, inode, flags, ctx):
		flags_writable = os.O_WRONLY | os.O_RDWR | os.O_APPEND
		if flags & flags_writable > 0:
			raise llfuse.FUSEError(errno.EROFS)

		self._bmp_get_segment(inode)
		return self._bmp_inode_to_handle(inode)

	def opendir(self, inode, ctx):
		if inode != llfuse.ROOT_INODE:
			raise llfuse.FUSEError(errno.ENOTDIR)

		return self._bmp_inode_to_handle(inode)

	def read(self, fh, off, size):
		segment = self._bmp_get_segment(self._bmp_handle_to_inode(fh))

		# Do not read past the end of the segment.
		segment_size = segment.end_offset - segment.offset
		if off >= segment_size:
			return b''

		size = min(size, segment_size - off)
		return self._bmp_carver.source.read(segment.offset + off, size)

	def readdir(self, fh, off):
		self._bmp_handle_to_inode(fh)

		for i in range(off, len(self._bmp_segments)):
			segment = self._bmp_segments[i]
			name = BitmapHelpers.SegmentFilename(segment.offset, segment.kind)
			yield (name.encode('ascii'), self._bmp_construct_attr(FIRST_SEGMENT_INODE + i), i + 1)

	def release(self, fh):
		self._bmp_release_handle(fh)

	def releasedir(self, fh):
		self._bmp_release_handle(fh)

	def write(self, fh, off, buf):
		raise llfuse.FUSEError(errno.EROFS)
