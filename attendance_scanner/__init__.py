"""
Attendance Scanner - Face Enrollment and Attendance Recognition

A modular Python service that registers subjects with a head-pose-guided
scan and marks daily attendance from a live camera by vote-based face
recognition. Integrates with a document store API and provides an MJPEG
preview stream.
"""

__version__ = "1.0.0"
__author__ = "Attendance Scanner Team"
