"""Event kinds and tag layouts for punk events"""
from typing import Any, Dict, List, Optional

APP_TAG = 'arkade-punk'

KIND_MINT = 1400
KIND_LISTING = 1401
KIND_SOLD = 1402
KIND_TRANSFER = 1403
KIND_EXIT = 1404

def get_tag(event: Dict[str, Any], name: str) -> Optional[str]:
    """Return the first value of tag `name`, or None."""
    for tag in event.get('tags') or []:
        if isinstance(tag, list) and len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None

def mint_filter(limit: int) -> Dict[str, Any]:
    """Relay filter for mint events.

    Relay-side tag filtering is unreliable, so network filtering happens
    client-side after the query.
    """
    return {'kinds': [KIND_MINT], '#t': [APP_TAG], 'limit': limit}

def sold_tags(token_id: str, seller: str, buyer: str, price: int, txid: str,
              network: str, metadata: Optional[str] = None) -> List[List[str]]:
    tags = [
        ['t', f'{APP_TAG}-sold'],
        ['punk_id', token_id],
        ['seller', seller],
        ['buyer', buyer],
        ['price', str(price)],
        ['txid', txid],
        ['network', network]
    ]
    if metadata:
        tags.append(['compressed', metadata])
    return tags

def transfer_tags(token_id: str, sender: str, recipient: str, txid: str,
                  network: str, metadata: Optional[str] = None) -> List[List[str]]:
    tags = [
        ['t', f'{APP_TAG}-transfer'],
        ['punk_id', token_id],
        ['from', sender],
        ['to', recipient],
        ['txid', txid],
        ['network', network]
    ]
    if metadata:
        tags.append(['compressed', metadata])
    return tags

def delist_tags(token_id: str, network: str) -> List[List[str]]:
    return [
        ['t', f'{APP_TAG}-delist'],
        ['punk_id', token_id],
        ['price', '0'],
        ['network', network],
        ['sale_mode', 'escrow']
    ]
