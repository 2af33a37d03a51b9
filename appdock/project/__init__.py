"""Project inputs: file sets and classification."""

from appdock.project.detect import ProjectClassification, classify, start_command
from appdock.project.files import FileEntry, FileSet, load_directory, merge_files, write_directory

__all__ = [
    "FileEntry",
    "FileSet",
    "ProjectClassification",
    "classify",
    "load_directory",
    "merge_files",
    "start_command",
    "write_directory",
]
