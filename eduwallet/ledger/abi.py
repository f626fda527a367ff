"""ABI fragments for the three contracts the wallet talks to.

Only the functions the gateway calls are listed.  Struct layouts:

  StudentBasicInfo = (name, surname, birthDate, birthPlace, country)
  Result           = (name, code, university, degreeCourse, grade,
                      date, ects, certificateHash)

birthDate/date are Unix seconds; ects is credits x 100.
"""

from __future__ import annotations


def _param(name: str, type_: str, components: list[dict] | None = None) -> dict:
    param: dict = {"name": name, "type": type_}
    if components is not None:
        param["components"] = components
        param["internalType"] = "struct"
    return param


def _fn(
    name: str,
    inputs: list[dict],
    outputs: list[dict] | None = None,
    mutability: str = "nonpayable",
) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


_BASIC_INFO = [
    _param("name", "string"),
    _param("surname", "string"),
    _param("birthDate", "uint256"),
    _param("birthPlace", "string"),
    _param("country", "string"),
]

_RESULT = [
    _param("name", "string"),
    _param("code", "string"),
    _param("university", "address"),
    _param("degreeCourse", "string"),
    _param("grade", "string"),
    _param("date", "uint256"),
    _param("ects", "uint256"),
    _param("certificateHash", "string"),
]

STUDENTS_REGISTER_ABI: list[dict] = [
    _fn(
        "subscribe",
        [_param("name", "string"), _param("country", "string"), _param("shortName", "string")],
    ),
    _fn(
        "registerStudent",
        [_param("student", "address"), _param("basicInfo", "tuple", _BASIC_INFO)],
    ),
    _fn(
        "getStudentWallet",
        [_param("student", "address")],
        [_param("", "address")],
        "view",
    ),
    _fn(
        "getUniversitiesWallets",
        [_param("universities", "address[]")],
        [_param("", "address[]")],
        "view",
    ),
]

STUDENT_ABI: list[dict] = [
    _fn(
        "getStudentInfo",
        [],
        [
            _param("basicInfo", "tuple", _BASIC_INFO),
            _param("results", "tuple[]", _RESULT),
        ],
        "view",
    ),
    _fn("getStudentBasicInfo", [], [_param("", "tuple", _BASIC_INFO)], "view"),
    _fn(
        "getPermissions",
        [_param("permissionType", "bytes32")],
        [_param("", "address[]")],
        "view",
    ),
    _fn("verifyPermission", [], [_param("", "bytes32")], "view"),
    _fn(
        "grantPermission",
        [_param("permissionType", "bytes32"), _param("university", "address")],
    ),
    _fn("revokePermission", [_param("university", "address")]),
    _fn("askForPermission", [_param("permissionType", "bytes32")]),
    _fn(
        "enroll",
        [
            _param("code", "string"),
            _param("name", "string"),
            _param("degreeCourse", "string"),
            _param("ects", "uint256"),
        ],
    ),
    _fn(
        "evaluate",
        [
            _param("code", "string"),
            _param("grade", "string"),
            _param("date", "uint256"),
            _param("certificateHash", "string"),
        ],
    ),
]

UNIVERSITY_ABI: list[dict] = [
    _fn(
        "getUniversityInfo",
        [],
        [
            _param("name", "string"),
            _param("country", "string"),
            _param("shortName", "string"),
        ],
        "view",
    ),
]
