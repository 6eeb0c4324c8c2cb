from typing import Union

DEFAULT_ETCH_PACKET_RESPONSE_QUERY = """{
    id
    eid
    name
    status
    isTest
    detailsURL
    etchTemplate {
      id
      eid
      config
      casts {
        id
        eid
        title
      }
    }
    documentGroup {
      id
      eid
      status
      files
      signers {
        id
        eid
        aliasId
        routingOrder
        name
        email
        status
        signActionType
      }
    }
  }"""


def create_etch_packet_mutation(response_query: Union[str, None] = None) -> str:
    return f"""mutation CreateEtchPacket (
  $name: String,
  $files: [EtchFile!],
  $isDraft: Boolean,
  $isTest: Boolean,
  $signatureEmailSubject: String,
  $signatureEmailBody: String,
  $signaturePageOptions: JSON,
  $signers: [JSON!],
  $webhookURL: String,
  $data: JSON,
) {{
  createEtchPacket (
    name: $name,
    files: $files,
    isDraft: $isDraft,
    isTest: $isTest,
    signatureEmailSubject: $signatureEmailSubject,
    signatureEmailBody: $signatureEmailBody,
    signaturePageOptions: $signaturePageOptions,
    signers: $signers,
    webhookURL: $webhookURL,
    data: $data
  ) {response_query or DEFAULT_ETCH_PACKET_RESPONSE_QUERY}
}}"""


def get_etch_packet_query(response_query: Union[str, None] = None) -> str:
    return f"""query GetEtchPacket ($eid: String!) {{
  etchPacket (eid: $eid) {response_query or DEFAULT_ETCH_PACKET_RESPONSE_QUERY}
}}"""


def generate_etch_sign_url_mutation() -> str:
    return """mutation GenerateEtchSignURL ($signerEid: String!, $clientUserId: String!) {
  generateEtchSignURL (signerEid: $signerEid, clientUserId: $clientUserId)
}"""
