"""
support for linking files and folders in the file tree to the data records of a DMP
"""
from .index import *
