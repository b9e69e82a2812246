import json
import logging
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
        }
        step = getattr(record, 'step', None)
        if step:
            payload['step'] = step
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload)


class ColorFormatter(logging.Formatter):
    """Terminal output with a colored marker per level.

    Records carrying a `step` extra (e.g. "3/7") are rendered as step headers.
    """
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    NC = '\033[0m'

    def format(self, record):
        msg = record.getMessage()
        step = getattr(record, 'step', None)
        if step:
            prefix = f"[{step}] "
            if msg.startswith(prefix):
                msg = msg[len(prefix):]
            return f"{self.YELLOW}[{step}]{self.NC} {msg}"
        if getattr(record, 'success', False):
            return f"{self.GREEN}✓ {msg}{self.NC}"
        if record.levelno >= logging.ERROR:
            text = f"{self.RED}✗ {msg}{self.NC}"
        elif record.levelno >= logging.WARNING:
            text = f"{self.YELLOW}⚠ {msg}{self.NC}"
        else:
            text = msg
        if record.exc_info:
            text += '\n' + self.formatException(record.exc_info)
        return text
