#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# tarstream - streaming ustar archiver
# Copyright (C) 2025-2026 tarstream contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import argparse
import json
import os
import logging
import logging.config
import platform
import sys
import time

from tarstream.Compression import ArchiveFile, STDIO_PATH, COMPRESSION_GZIP, COMPRESSION_BZIP2, COMPRESSION_XZ
from tarstream.Entry import CHRTYPE, BLKTYPE
from tarstream.Errors import TarError, UsageError, EmptyArchiveError, AccessError, EXIT_SUCCESS, EXIT_FAILURE, fromOSError
from tarstream.Extractor import ExtractionEngine
from tarstream.Kernel import PUBLIC_VERSION, getLogger, configureGlobalLogLevel
from tarstream.Progress import Progress, TrackedReader
from tarstream.Reader import ArchiveReader
from tarstream.Settings import ArchiveOptions, FORMATS, DEFAULT_FORMAT
from tarstream.Utils import flushPrint, displayName, getEnv
from tarstream.Walker import DirectoryWalker
from tarstream.Writer import ArchiveWriter

logger = getLogger(__name__)

PROG = 'tar'
ABOUT = 'an archiving utility'
USAGE = 'tar {A|c|d|r|t|u|x}[fvhpPzjJC] [ARG...]'

MODE_REQUIRED_MESSAGE = "You must specify one of the '-Acdtrux', '--delete' or '--test-label' options"
MODE_CONFLICT_MESSAGE = "You may not specify more than one '-Acdtrux', '--delete' or '--test-label' option"
FILE_REQUIRED_MESSAGE = "option requires an argument -- 'f'"

EXIT_INTERRUPTED = 130

# Operation modes: dest -> short flag
SUPPORTED_MODES = {'create': 'c', 'list': 't', 'extract': 'x'}
UNSUPPORTED_MODES = {'catenate': 'A', 'diff': 'd', 'append': 'r', 'update': 'u', 'delete': '--delete'}

# Letters accepted in a traditional first argument ("tar cvf archive.tar")
_TRADITIONAL_LETTERS = set('AcdrtuxfvhpPzjJC')
_OPTIONS_WITH_VALUE = set('fC')


class TarArgumentParser(argparse.ArgumentParser):
    """ArgumentParser raising UsageError instead of printing and exiting"""

    def error(self, message):
        raise UsageError(translateArgparseMessage(message))


def translateArgparseMessage(message: str) -> str:
    if 'argument -f/--file: expected one argument' in message:
        return FILE_REQUIRED_MESSAGE
    if 'argument -C/--directory: expected one argument' in message:
        return "option requires an argument -- 'C'"
    return message


def normalizeArguments(argv: list) -> list:
    """
    Expand the traditional option style, e.g. ['cvf', 'a.tar', 'dir'] -> ['-c', '-v', '-f', 'a.tar', 'dir'].

    Only the first argument is considered, and only if every letter is a known
    option and exactly one of them selects an operation mode.
    """
    if not argv or argv[0].startswith('-'):
        return list(argv)

    letters = argv[0]
    modes = [c for c in letters if c in 'Acdrtux']
    if not letters or not set(letters) <= _TRADITIONAL_LETTERS or len(modes) != 1:
        return list(argv)

    result = []
    values = list(argv[1:])
    for letter in letters:
        result.append('-' + letter)
        if letter in _OPTIONS_WITH_VALUE and values:
            result.append(values.pop(0))
    return result + values


def validateLogLevel(logLevel):
    """Validate log level for argparse"""
    # Allow file paths (they'll be validated later)
    if os.path.exists(logLevel):
        return logLevel

    validLevels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if logLevel.upper() not in validLevels:
        raise argparse.ArgumentTypeError(
            f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
        )
    return logLevel.upper()


def configureParser():
    parser = TarArgumentParser(prog=PROG, description=ABOUT, usage=USAGE, add_help=False, exit_on_error=False)

    modes = parser.add_argument_group('Main operation mode')
    modes.add_argument('-A', '--catenate', '--concatenate', dest='catenate', action='store_true',
                       help='Append tar files to an archive (not supported)')
    modes.add_argument('-c', '--create', action='store_true', help='Create a new archive')
    modes.add_argument('-d', '--diff', '--compare', dest='diff', action='store_true',
                       help='Find differences between archive and file system (not supported)')
    modes.add_argument('--delete', action='store_true', help='Delete from the archive (not supported)')
    modes.add_argument('-r', '--append', action='store_true',
                       help='Append files to the end of an archive (not supported)')
    modes.add_argument('-t', '--list', action='store_true', help='List the contents of an archive')
    modes.add_argument('-u', '--update', action='store_true',
                       help='Only append files newer than copy in archive (not supported)')
    modes.add_argument('-x', '--extract', '--get', dest='extract', action='store_true',
                       help='Extract files from an archive')

    parser.add_argument('-f', '--file', metavar='ARCHIVE', help="Use archive file ARCHIVE ('-' for stdin/stdout)")
    parser.add_argument('-C', '--directory', metavar='DIR', help='Change to DIR before performing any operation')

    compression = parser.add_argument_group('Compression options')
    compression.add_argument('-z', '--gzip', action='store_true', help='Filter the archive through gzip')
    compression.add_argument('-j', '--bzip2', action='store_true', help='Filter the archive through bzip2')
    compression.add_argument('-J', '--xz', action='store_true', help='Filter the archive through xz')

    parser.add_argument('-v', '--verbose', action='store_true', help='Verbosely list files processed')
    parser.add_argument('-h', '--dereference', action='store_true',
                        help='Follow symlinks; archive and dump the files they point to')
    parser.add_argument('-p', '--preserve-permissions', '--same-permissions', dest='preservePermissions',
                        action='store_true', help='Extract information about file permissions')
    parser.add_argument('-P', '--absolute-names', dest='absoluteNames', action='store_true',
                        help="Don't strip leading '/' from file names when creating archives")
    parser.add_argument('--format', choices=FORMATS, default=DEFAULT_FORMAT,
                        help=f'Extension format for long names and large values (default: {DEFAULT_FORMAT})')
    parser.add_argument('--progress', action='store_true', help='Show a progress bar on stderr')
    parser.add_argument('--log-level', dest='logLevel', type=validateLogLevel, metavar='LEVEL',
                        help='DEBUG, INFO, WARNING, ERROR or a JSON logging config file')
    parser.add_argument('--help', action='store_true', help='Show this help message and exit')
    parser.add_argument('--version', action='store_true', help='Show version information and exit')

    parser.add_argument('files', nargs='*', metavar='FILE', help='Files to archive, or members to list or extract')

    return parser


def parseArguments(argv=None):
    """
    Parse command line arguments.

    Raises:
        UsageError: On any invalid argument
    """
    parser = configureParser()
    argv = normalizeArguments(sys.argv[1:] if argv is None else argv)

    try:
        args = parser.parse_args(argv)
    except argparse.ArgumentError as e:
        raise UsageError(translateArgparseMessage(str(e))) from e

    return parser, args


def configureLogging(logLevel):
    """Configure logging from --log-level or TAR_LOGGING_LEVEL

    Both can be a logging level name (DEBUG, INFO, WARNING, ERROR) or a path
    to a logging configuration JSON file.
    """
    if logLevel is None:
        logLevel = getEnv('TAR_LOGGING_LEVEL', None)

    if logLevel is None:
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            logger.info(f"Logging configured from file: {logLevel}")
            return logLevel

        except (json.JSONDecodeError, ValueError, KeyError) as e:
            flushPrint(f"{PROG}: Failed to load logging config from {logLevel}: {e}", sys.stderr)

    levelMapping = {'DEBUG': logging.DEBUG, 'INFO': logging.INFO, 'WARNING': logging.WARNING, 'ERROR': logging.ERROR}
    if logLevel.upper() in levelMapping:
        configureGlobalLogLevel(levelMapping[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        configureGlobalLogLevel(logging.WARNING)

    logging.getLogger('sentry_sdk').setLevel(logging.INFO)
    return logLevel


def showVersion():
    flushPrint(f"{PROG} (tarstream) {PUBLIC_VERSION}")
    flushPrint(f"Formats: ustar with {', '.join(FORMATS)} extensions; filters: gzip, bzip2, xz")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine}")


def selectMode(args) -> str:
    """
    Return the single requested operation mode.

    Raises:
        UsageError: If none, several, or an unsupported mode is requested
    """
    requested = [name for name in list(SUPPORTED_MODES) + list(UNSUPPORTED_MODES) if getattr(args, name)]

    if not requested:
        raise UsageError(MODE_REQUIRED_MESSAGE)

    if len(requested) > 1:
        raise UsageError(MODE_CONFLICT_MESSAGE)

    mode = requested[0]
    if mode in UNSUPPORTED_MODES:
        flag = UNSUPPORTED_MODES[mode]
        flag = flag if flag.startswith('--') else '-' + flag
        raise UsageError(f"'{flag}' ({mode}) is not supported by this implementation")

    return mode


def selectCompression(args):
    selected = [name for flag, name in ((args.gzip, COMPRESSION_GZIP), (args.bzip2, COMPRESSION_BZIP2),
                                        (args.xz, COMPRESSION_XZ)) if flag]
    if len(selected) > 1:
        raise UsageError("Conflicting compression options")
    return selected[0] if selected else None


def buildOptions(args, verboseCallback=None) -> ArchiveOptions:
    return ArchiveOptions(
        preservePermissions=args.preservePermissions,
        absoluteNames=args.absoluteNames,
        dereferenceSymlinks=args.dereference,
        verboseCallback=verboseCallback,
        format=args.format,
    )


def formatListing(entry) -> str:
    """tar -tv style line: mode owner/group size date name"""
    owner = f"{entry.uname or entry.uid}/{entry.gname or entry.gid}"
    size = entry.size if entry.hasPayload() else 0
    if entry.isOther() and entry.typeflag in (CHRTYPE, BLKTYPE):
        size = f"{entry.devmajor},{entry.devminor}"
    date = time.strftime('%Y-%m-%d %H:%M', time.localtime(entry.mtime))

    line = f"{entry.modeString()} {owner} {size:>8} {date} {displayName(entry.name)}"
    if entry.isSymlink():
        line += f" -> {displayName(entry.linkname)}"
    elif entry.isHardLink():
        line += f" link to {displayName(entry.linkname)}"
    return line


def matchesMember(name: str, members: list) -> str:
    """Return the requested member selecting this name (itself or an ancestor), if any."""
    stripped = name.rstrip('/')
    for member in members:
        prefix = member.rstrip('/')
        if stripped == prefix or stripped.startswith(prefix + '/'):
            return member
    return None


class TarCommand:
    """One tar invocation: create, list or extract."""

    def __init__(self, args):
        self.args = args
        self.mode = selectMode(args)
        self.compression = selectCompression(args)

        if not args.file:
            raise UsageError(FILE_REQUIRED_MESSAGE)

        self.archivePath = args.file if args.file == STDIO_PATH else os.path.abspath(args.file)

        # Listing goes to stderr when the archive itself is written to stdout
        self.output = sys.stderr if (self.mode == 'create' and args.file == STDIO_PATH) else sys.stdout
        self.progress = None

    def run(self) -> int:
        logger.info(f"{self.mode} {self.archivePath} (compression {self.compression or 'none'})")
        return getattr(self, self.mode)()

    def report(self, text: str):
        if self.progress:
            self.progress.write(text, self.output)
        else:
            flushPrint(text, self.output)

    def _verboseCallback(self):
        if not self.args.verbose:
            return None
        return lambda entry: self.report(displayName(entry.name))

    def _archiveSize(self) -> int:
        if self.archivePath == STDIO_PATH or self.compression:
            return 0
        try:
            return os.path.getsize(self.archivePath)
        except OSError:
            return 0

    def create(self) -> int:
        if not self.args.files:
            raise EmptyArchiveError()

        options = buildOptions(self.args, self._verboseCallback())
        walker = DirectoryWalker(options)

        previousDirectory = os.getcwd()
        if self.args.directory:
            self._changeDirectory(self.args.directory)

        try:
            with ArchiveFile(self.archivePath, 'w', self.compression) as fileobj:
                writer = ArchiveWriter(fileobj, options)
                entries = walker.walkAll(self.args.files)

                if self.args.progress:
                    self.progress = Progress(0, 'Archiving')
                writer.write(entries, progress=self.progress)
        finally:
            self._finishProgress()
            os.chdir(previousDirectory)

        return EXIT_SUCCESS

    def _changeDirectory(self, directory: str):
        try:
            os.chdir(directory)
        except OSError as e:
            raise fromOSError(e, directory, "Cannot change directory") from e

    def _entries(self, fileobj, options):
        """Reader entries filtered by the member operands, if any."""
        members = self.args.files
        found = set()

        for entry in ArchiveReader(fileobj, options.chunkSize):
            if members:
                member = matchesMember(entry.name, members)
                if member is None:
                    continue
                found.add(member)
            yield entry

        missing = [m for m in members if m not in found]
        if missing:
            raise AccessError("Not found in archive", missing[0])

    def _openForReading(self):
        archive = ArchiveFile(self.archivePath, 'r', self.compression)
        if self.args.progress:
            self.progress = Progress(self._archiveSize(), 'Reading')
        return archive

    def list(self) -> int:
        options = buildOptions(self.args)

        archive = self._openForReading()
        try:
            with archive as fileobj:
                source = TrackedReader(fileobj, self.progress) if self.progress else fileobj
                for entry in self._entries(source, options):
                    self.report(formatListing(entry) if self.args.verbose else displayName(entry.name))
        finally:
            self._finishProgress()

        return EXIT_SUCCESS

    def extract(self) -> int:
        options = buildOptions(self.args, self._verboseCallback())

        archive = self._openForReading()
        try:
            with archive as fileobj:
                source = TrackedReader(fileobj, self.progress) if self.progress else fileobj
                engine = ExtractionEngine(self.args.directory or os.curdir, options)
                engine.extract(self._entries(source, options))
        finally:
            self._finishProgress()

        return EXIT_SUCCESS

    def _finishProgress(self):
        if self.progress:
            logger.info(f"{self.mode}: {self.progress.summary()}")
            self.progress.finishBar()
            self.progress = None


def reportError(error: TarError):
    """Print the one-line diagnostic; the traceback only goes to the debug log."""
    flushPrint(f"{PROG}: {error}", sys.stderr)
    logger.debug(f"{type(error).__name__}: {error}", exc_info=True)

    if getEnv('RAISE_EXCEPTION', False):
        raise error


def main(argv=None) -> int:
    """Command line entry point; returns the process exit status."""
    try:
        parser, args = parseArguments(argv)
        configureLogging(args.logLevel)

        if args.help:
            parser.print_help()
            return EXIT_SUCCESS

        if args.version:
            showVersion()
            return EXIT_SUCCESS

        return TarCommand(args).run()

    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...', sys.stderr)
        return EXIT_INTERRUPTED
    except TarError as e:
        reportError(e)
        return e.exitCode
    except OSError as e:
        error = fromOSError(e)
        reportError(error)
        return error.exitCode
    except Exception as e:
        flushPrint(f"{PROG}: Unexpected error: {e}", sys.stderr)
        logger.exception(f"Unhandled {type(e).__name__}")

        if getEnv('RAISE_EXCEPTION', False):
            raise
        return EXIT_FAILURE
