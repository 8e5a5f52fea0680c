"""
Utilities for loading and combining configuration data.

Configuration throughout dmpeditor is a plain (possibly nested) dictionary handed to the
constructor of the component that needs it.  This module supplies the helpers for reading
such dictionaries from files, layering them over defaults, and setting up logging for
command-line use.
"""
import os, sys, json, logging
from collections.abc import Mapping
from copy import deepcopy

import yaml

from . import DMPEditorException

NORMAL = 25
logging.addLevelName(NORMAL, "NORMAL")

DEF_LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

class ConfigurationException(DMPEditorException):
    """
    an exception indicating a missing or invalid configuration parameter
    """

    def __init__(self, message: str=None, param: str=None, cause: Exception=None):
        if not message:
            message = "Configuration error"
            if param:
                message += f" in parameter '{param}'"
            if cause:
                message += ": " + str(cause)
        super(ConfigurationException, self).__init__(message, cause)
        self.param = param

def merge_config(override: Mapping, defconf: Mapping) -> Mapping:
    """
    merge two configuration dictionaries into a new one.  Values in ``override`` take
    precedence over those in ``defconf``; where both contain a dictionary under the same
    key, the two dictionaries are merged recursively.  Neither input is modified.

    :param Mapping override:  the configuration whose values should win
    :param Mapping defconf:   the default configuration to merge into
    :rtype: dict
    """
    out = deepcopy(dict(defconf)) if defconf else {}
    if not override:
        return out

    for key, val in override.items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge_config(val, out[key])
        else:
            out[key] = deepcopy(val)
    return out

def load_from_file(configfile: str) -> Mapping:
    """
    read the configuration from the given file and return it as a dictionary.
    The file's format is determined by its extension: a ``.json`` file is read as
    JSON; anything else is read as YAML (which includes JSON as a subset).

    :raises IOError:     if the file cannot be opened or read
    :raises ValueError:  if the file contents cannot be parsed or do not contain a
                         dictionary
    """
    with open(configfile) as fd:
        if configfile.endswith('.json'):
            data = json.load(fd)
        else:
            data = yaml.safe_load(fd)

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{configfile}: configuration does not contain a dictionary")
    return data

def get_bool(config: Mapping, param: str, default: bool=False) -> bool:
    """
    return the value of a boolean configuration parameter, tolerating string values
    like "true" and "0" that come from environment variables or hand-edited files.
    """
    val = config.get(param, default)
    if isinstance(val, str):
        val = val.strip().lower()
        if val in ("true", "yes", "on", "1"):
            return True
        if val in ("false", "no", "off", "0", ""):
            return False
        raise ConfigurationException(f"{param}: not a boolean value: {val}", param)
    return bool(val)

def get_number(config: Mapping, param: str, default, convert=float):
    """
    return the value of a numeric configuration parameter, converted with ``convert``
    """
    val = config.get(param, default)
    try:
        return convert(val)
    except (TypeError, ValueError) as ex:
        raise ConfigurationException(f"{param}: not a number: {val}", param, ex) from ex

def configure_log(logfile: str=None, level: int=None, format: str=None, config: Mapping=None,
                  addstderr: bool=False):
    """
    set up the root logger.

    :param str logfile:    a file to send log messages to.  If not given, the ``logfile``
                           config parameter is consulted.
    :param int   level:    the minimum level of messages to record (default: ``loglevel``
                           from the config or DEBUG)
    :param str  format:    the message format to use (default: ``logformat`` from the
                           config or :py:data:`DEF_LOG_FORMAT`)
    :param dict config:    the configuration to draw defaults from
    :param bool addstderr: if True, also send messages to standard error
    """
    if config is None:
        config = {}
    if not logfile:
        logfile = config.get('logfile')
    if level is None:
        level = config.get('loglevel', logging.DEBUG)
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                raise ConfigurationException("loglevel: unrecognized level name", 'loglevel')
    if not format:
        format = config.get('logformat', DEF_LOG_FORMAT)

    rootlog = logging.getLogger()
    rootlog.setLevel(level)
    fmtr = logging.Formatter(format)

    if logfile:
        logdir = os.path.dirname(logfile)
        if logdir and not os.path.exists(logdir):
            os.makedirs(logdir)
        hdlr = logging.FileHandler(logfile)
        hdlr.setFormatter(fmtr)
        hdlr.setLevel(level)
        rootlog.addHandler(hdlr)

    if addstderr:
        hdlr = logging.StreamHandler(sys.stderr)
        hdlr.setFormatter(fmtr)
        hdlr.setLevel(level)
        rootlog.addHandler(hdlr)

    if not rootlog.handlers:
        rootlog.addHandler(logging.NullHandler())
