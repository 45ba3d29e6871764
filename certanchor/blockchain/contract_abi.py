"""
ABI of the certificate registry contract.
"""

# keccak256("MINTER_ROLE")
MINTER_ROLE = "0x9f2df0fed2c77648de5860a4cc508cd0818c85b8b8a1ab4ceeef8d981c8956a6"

_CERTIFICATE_FIELDS = [
    {"internalType": "address", "name": "student", "type": "address"},
    {"internalType": "string", "name": "courseId", "type": "string"},
    {"internalType": "string", "name": "courseName", "type": "string"},
    {"internalType": "uint256", "name": "completionDate", "type": "uint256"},
    {"internalType": "string", "name": "ipfsHash", "type": "string"},
    {"internalType": "bool", "name": "isValid", "type": "bool"},
    {"internalType": "uint256", "name": "mintedAt", "type": "uint256"},
]

CERTIFICATE_REGISTRY_ABI = [
    {
        "inputs": [
            {"internalType": "address", "name": "student", "type": "address"},
            {"internalType": "string", "name": "courseId", "type": "string"},
            {"internalType": "string", "name": "courseName", "type": "string"},
            {"internalType": "uint256", "name": "completionDate", "type": "uint256"},
            {"internalType": "string", "name": "ipfsHash", "type": "string"}
        ],
        "name": "mintCertificate",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "certificateId", "type": "uint256"}],
        "name": "verifyCertificate",
        "outputs": _CERTIFICATE_FIELDS,
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "certificateId", "type": "uint256"}],
        "name": "getCertificate",
        "outputs": _CERTIFICATE_FIELDS,
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "address", "name": "student", "type": "address"}],
        "name": "getStudentCertificates",
        "outputs": [{"internalType": "uint256[]", "name": "", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "totalCertificates",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "role", "type": "bytes32"},
            {"internalType": "address", "name": "account", "type": "address"}
        ],
        "name": "hasRole",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "MINTER_ROLE",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "certificateId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "student", "type": "address"},
            {"indexed": False, "internalType": "string", "name": "courseId", "type": "string"},
            {"indexed": False, "internalType": "string", "name": "courseName", "type": "string"},
            {"indexed": False, "internalType": "uint256", "name": "completionDate", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "ipfsHash", "type": "string"}
        ],
        "name": "CertificateMinted",
        "type": "event"
    }
]
