"""
Connection settings from a config file or the environment.

A config file is a JSON (or YAML, if pyyaml is installed) object of named
sections.  A section may ``inherits`` another one, and a "meta" section
may list other sections under ``contains``.  Keys prefixed with
``davtransfer_`` are handed to DAVSession:

    {
        "default": {
            "davtransfer_url": "https://cloud.example.com/remote.php/webdav",
            "davtransfer_user": "alice",
            "davtransfer_pass": "secret"
        },
        "slow": {"inherits": "default", "davtransfer_max_concurrent": 1}
    }
"""

import json
import logging
import os
from fnmatch import fnmatch
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

ENV_PREFIX = "DAVTRANSFER_"
KEY_PREFIX = "davtransfer_"

## values arriving as strings from the environment
_INT_PARAMS = ("max_concurrent", "chunk_size")
_FLOAT_PARAMS = ("timeout",)
_BOOL_PARAMS = ("verify_ssl", "huge_tree")


def expand_config_section(config, section="default", blacklist=None):
    """
    In the "normal" case, will return [ section ]

    We allow:

    * * includes all sections in config file
    * "Meta"-sections in the config file with the keyword "contains" followed by a list of section names
    * Recursive "meta"-sections
    * Glob patterns (work_* for all sections starting with work_)
    * Glob patterns in "meta"-sections
    """
    if section == "*":
        return [x for x in config if not config[x].get("disable", False)]

    ## not a glob pattern
    if set(section).isdisjoint(set("[*?")):
        if "contains" in config[section]:
            results = []
            if not blacklist:
                blacklist = set()
            blacklist.add(section)
            for subsection in config[section]["contains"]:
                if subsection not in results and subsection not in blacklist:
                    for recursivesubsection in expand_config_section(config, subsection, blacklist):
                        if recursivesubsection not in results:
                            results.append(recursivesubsection)
            return results
        if config[section].get("disable", False):
            return []
        return [section]

    ## section name is a glob pattern
    results = []
    for s in config:
        if not fnmatch(s, section):
            continue
        if set(s).isdisjoint(set("[*?")):
            expanded = expand_config_section(config, s)
        else:
            ## section names shouldn't contain []?* ... but if they do, don't recurse
            expanded = [s]
        for x in expanded:
            if x not in results:
                results.append(x)
    return results


def config_section(config, section="default"):
    if section in config and "inherits" in config[section]:
        ret = config_section(config, config[section]["inherits"])
    else:
        ret = {}
    if section in config:
        ret.update(config[section])
    return ret


def default_config_files() -> List[str]:
    cfgdir = os.path.join(os.environ.get("HOME", "/"), ".config", "davtransfer")
    return [
        os.path.join(cfgdir, "config.json"),
        os.path.join(cfgdir, "config.yaml"),
        "/etc/davtransfer/config.json",
    ]


def read_config(fn: Optional[str] = None) -> Dict[str, Any]:
    """
    Read a config file.  Without a file name, the first of the default
    locations that holds a usable config is read.  A missing or broken
    file gives an empty dict.
    """
    if not fn:
        for config_file in default_config_files():
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return {}

    try:
        with open(fn, "rb") as config_file:
            return json.load(config_file)
    except FileNotFoundError:
        log.debug(f"no config file at {fn}")
        return {}
    except json.decoder.JSONDecodeError:
        pass
    except ValueError:
        log.error(f"error in config file {fn}.  It will be ignored", exc_info=True)
        return {}

    ## Late import.  yaml is an external module, and only needed for yaml config files.
    try:
        import yaml
    except ImportError:
        log.error(f"config file {fn} exists but is not valid json, and pyyaml is not installed.")
        return {}
    try:
        with open(fn, "rb") as config_file:
            cfg = yaml.safe_load(config_file)
    except yaml.YAMLError:
        log.error(f"config file {fn} exists but is neither valid json nor yaml.  Check the syntax.")
        return {}
    if not isinstance(cfg, dict):
        log.error(f"config file {fn} does not hold a mapping of sections")
        return {}
    return cfg


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)


def normalize_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Turn keys like ``user``/``pass`` into DAVSession argument names, and
    string values into the types DAVSession expects.
    """
    ret = {}
    for key, value in params.items():
        if key == "pass":
            key = "password"
        elif key == "user":
            key = "username"
        if key in _INT_PARAMS:
            value = int(value)
        elif key in _FLOAT_PARAMS:
            value = float(value)
        elif key in _BOOL_PARAMS:
            value = _to_bool(value)
        ret[key] = value
    return ret


def params_from_environment(environ=None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    params = {}
    for key in environ:
        if key.startswith(ENV_PREFIX) and not key.startswith(ENV_PREFIX + "CONFIG"):
            params[key[len(ENV_PREFIX) :].lower()] = environ[key]
    return params


def params_from_config(cfg: Dict[str, Any], section: str = "default") -> Dict[str, Any]:
    params = {}
    for key, value in config_section(cfg, section).items():
        if key.startswith(KEY_PREFIX) and value is not None and value != "":
            params[key[len(KEY_PREFIX) :]] = value
    return params


def get_session(
    check_config_file: bool = True,
    config_file: Optional[str] = None,
    config_section: Optional[str] = None,
    environment: bool = True,
    **params,
):
    """
    Build a DAVSession.  Nothing is sent to the server.  Settings are
    taken from the first source that has any, in this order:

    * The keyword parameters given
    * Environment variables prepended with ``DAVTRANSFER_``, like
      ``DAVTRANSFER_URL``, ``DAVTRANSFER_USERNAME``, ``DAVTRANSFER_PASSWORD``
    * The config file, ``DAVTRANSFER_CONFIG_FILE`` or one of the default
      locations, section ``DAVTRANSFER_CONFIG_SECTION`` or "default"

    Returns None if no source has any settings.
    """
    ## late import, the session pulls in the transports
    from davtransfer.session import DAVSession

    if params:
        return DAVSession(**normalize_params(params))

    if environment:
        env_params = params_from_environment()
        if env_params:
            log.debug("session settings taken from the environment")
            return DAVSession(**normalize_params(env_params))
        if not config_file:
            config_file = os.environ.get(ENV_PREFIX + "CONFIG_FILE")
        if not config_section:
            config_section = os.environ.get(ENV_PREFIX + "CONFIG_SECTION")

    if check_config_file:
        cfg = read_config(config_file)
        if cfg:
            file_params = params_from_config(cfg, config_section or "default")
            if file_params:
                log.debug(f"session settings taken from section {config_section or 'default'}")
                return DAVSession(**normalize_params(file_params))
    return None
