"""Line-anchored comments for files that cannot carry them inline.

This package contains:
- LineIndex for mapping byte offsets to lines of a file snapshot
- AnchorTracker for owning comments and detecting drift of anchored lines
- State file I/O and a filesystem host for the ``ncomment`` command line
"""

__version__ = "0.1.0"
