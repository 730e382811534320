#
# Copyright (c) 2022 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from typing import Dict, List, Union

JsonableAtom = Union[str, int, float, bool, None]

Jsonable = Union[JsonableAtom, List['Jsonable'], Dict[str, 'Jsonable']]
"""A value that can be serialized with json.dumps() and returned from json.loads()"""

JsonableDict = Dict[str, Jsonable]
